from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('pretixbase', '0096_auto_20180722_0801'),
    ]

    operations = [
        migrations.CreateModel(
            name='WalleeTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False)),
                ('space_id', models.BigIntegerField()),
                ('transaction_id', models.BigIntegerField()),
                ('state', models.CharField(choices=[
                    ('CREATE', 'Create'), ('PENDING', 'Pending'), ('CONFIRMED', 'Confirmed'),
                    ('PROCESSING', 'Processing'), ('FAILED', 'Failed'), ('AUTHORIZED', 'Authorized'),
                    ('VOIDED', 'Voided'), ('COMPLETED', 'Completed'), ('FULFILL', 'Fulfill'),
                    ('DECLINE', 'Decline'),
                ], default='PENDING', max_length=16)),
                ('updated', models.DateTimeField(auto_now=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                            related_name='wallee_transactions', to='pretixbase.order')),
                ('payment', models.OneToOneField(null=True, on_delete=django.db.models.deletion.PROTECT,
                                                 related_name='wallee_transaction',
                                                 to='pretixbase.orderpayment')),
            ],
            options={
                'unique_together': {('space_id', 'transaction_id')},
            },
        ),
    ]
