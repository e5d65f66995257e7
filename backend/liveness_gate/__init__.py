"""
Liveness gate: ordered blink, mouth-open and head-turn challenge for KYC onboarding
"""
__version__ = "1.0.0"
