"""
Handyman Payments
=================

Serverless payment handlers for the SendAHandyman marketplace: authorization
at booking, capture at completion, follow-on material charges and admin quote
checkout. Built for AWS Lambda behind API Gateway, with Stripe as the payment
processor, DynamoDB for task/payment records and SQS + Twilio for customer
notifications.

Handlers in this package:
- create_payment.py               → booking authorization hold (/create-payment)
- create_task.py                  → task + pending payment record (/create-task)
- capture_payment.py              → capture the hold on completion (/capture-payment)
- charge_additional_materials.py  → post-completion materials charge (/charge-additional-materials)
- admin_create_quote.py           → issue an admin quote (/admin-create-quote)
- get_quote.py                    → admin quote lookup (/quote/{token})
- process_quote_payment.py        → admin quote checkout (/process-quote-payment)
- reconcile_payment.py            → resolve ambiguous captures by hold id (/reconcile-payment)
- worker.py                       → SQS-triggered SMS sender
- health.py                       → health and version check (/healthz)
- payments/                       → orchestrators, reconciler, domain models
- utils/                          → logging, config, secrets, Stripe, DynamoDB, SQS, Twilio

Environment variables expected:
  • AWS_REGION                    - AWS region for all resources
  • STRIPE_SECRET_NAME            - Secrets Manager secret with the Stripe key
  • TWILIO_SECRET_NAME            - Secrets Manager secret with Twilio credentials (worker)
  • TASKS_TABLE / PAYMENTS_TABLE / QUOTES_TABLE - DynamoDB tables
  • SMS_QUEUE_URL / EMAIL_QUEUE_URL - notification queues (optional)
  • IDEMPOTENCY_TABLE             - DynamoDB table for SMS redelivery guard (optional)
  • PAYMENT_TIMEOUT_SECONDS       - Stripe request timeout (default: 10)
  • ADDITIONAL_CHARGE_CAP_RATIO   - optional cap on follow-on charges
  • ADMIN_SECRET_NAME             - Secrets Manager secret with the admin bearer token
  • LOG_LEVEL                     - Log verbosity (default: INFO)

All handlers in this package are stateless and Lambda-optimized.
"""

__version__ = "1.0.0"
__author__ = "SendAHandyman Engineering"
__license__ = "MIT"

__all__ = ["__version__", "__author__"]
