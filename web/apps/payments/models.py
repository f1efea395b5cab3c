from django.db import models


class PaymentCallback(models.Model):
    """One delivery of an STK push result, stored before it is acknowledged.

    The row is the durable queue between the public callback endpoint and
    reconciliation: the endpoint only writes it, workers process it.
    """

    class State(models.TextChoices):
        RECEIVED = "received"
        PROCESSED = "processed"
        UNMATCHED = "unmatched"
        PAYMENT_FAILED = "payment_failed"
        IGNORED = "ignored"
        AMOUNT_MISMATCH = "amount_mismatch"  # paid less than the order total
        INVALID = "invalid"
        FAILED = "failed"  # processing error, retryable

    raw_body = models.TextField(blank=True, default="")
    payload = models.JSONField(null=True, blank=True)
    checkout_request_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    result_code = models.IntegerField(null=True, blank=True)
    state = models.CharField(max_length=16, choices=State.choices, default=State.RECEIVED, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    request_id = models.CharField(max_length=64, blank=True, default="")
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "payment_callbacks"
        ordering = ["received_at"]

    def __str__(self):
        return f"{self.checkout_request_id or '-'} ({self.state})"
