"""
forecast — hourly forecast collection for every pump.
"""
