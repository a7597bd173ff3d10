"""
spatial — great-circle distance and nearest-neighbour search.
"""
