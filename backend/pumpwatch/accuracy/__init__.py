"""
accuracy — forecast verification against observed rainfall, and scoring.

Sub-modules:
    metrics          — MAE / RMSE / bias / correlation / Brier / contingency
    accuracy_engine  — verification pass, metric snapshots, history
    models           — forecast points, verifications, metric snapshots
"""
