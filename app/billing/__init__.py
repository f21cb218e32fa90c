"""
Billing app: payments, package subscriptions and the wallet ledger.

This app handles:
- Checkout initiation for single sessions and package subscriptions
- Stripe webhook processing into ledger effects
- Deferred revenue recognised per attended session
- Platform and psychologist wallets
- Renewal and credit-expiry schedulers

Related apps:
    - accounts: Payer identity and account deletion
    - practice: Pricing catalog and appointments

Usage:
    from billing.services import CheckoutService, RevenueRecognitionService

    checkout = CheckoutService.start_single_session(client, psychologist_id, window)
    RevenueRecognitionService.recognize(appointment_id)
"""
