"""
Handyman Payments Utilities
===========================

Shared helper modules for the payment handlers:

- logger.py          → structured JSON logging
- config.py          → environment-driven settings
- secrets.py         → AWS Secrets Manager integration (Stripe, Twilio)
- stripe_gateway.py  → Stripe PaymentIntents gateway client
- task_store.py      → DynamoDB task / payment / quote persistence
- notifications.py   → SQS hand-off for SMS and email notifications
- twilio_client.py   → authenticated Twilio client builder (SMS worker)
- idempotency.py     → DynamoDB-based duplicate-event guard
- http.py            → Lambda proxy request/response helpers

All modules are stateless and safe to reuse across warm Lambda invocations.
"""
