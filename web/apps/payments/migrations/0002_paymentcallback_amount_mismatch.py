from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="paymentcallback",
            name="state",
            field=models.CharField(
                choices=[
                    ("received", "Received"),
                    ("processed", "Processed"),
                    ("unmatched", "Unmatched"),
                    ("payment_failed", "Payment Failed"),
                    ("ignored", "Ignored"),
                    ("amount_mismatch", "Amount Mismatch"),
                    ("invalid", "Invalid"),
                    ("failed", "Failed"),
                ],
                db_index=True,
                default="received",
                max_length=16,
            ),
        ),
    ]
