from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="ordermodel",
            name="payment_request_id",
            field=models.CharField(blank=True, max_length=64, null=True, unique=True),
        ),
    ]
