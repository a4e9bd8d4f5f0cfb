"""
Payment lifecycle: authorize at booking, capture at completion, charge extra
after completion, and reconcile holds whose id was never stored.
"""
