from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentCallback",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("raw_body", models.TextField(blank=True, default="")),
                ("payload", models.JSONField(blank=True, null=True)),
                ("checkout_request_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("result_code", models.IntegerField(blank=True, null=True)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processed", "Processed"),
                            ("unmatched", "Unmatched"),
                            ("payment_failed", "Payment Failed"),
                            ("ignored", "Ignored"),
                            ("invalid", "Invalid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="received",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True, default="")),
                ("request_id", models.CharField(blank=True, default="", max_length=64)),
                ("received_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "payment_callbacks",
                "ordering": ["received_at"],
            },
        ),
    ]
