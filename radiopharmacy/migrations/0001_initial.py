import django.core.serializers.json
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='StoredRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(help_text="Context key, e.g. 'radiopharmacy:f18'", max_length=100, unique=True)),
                ('payload', models.BinaryField(help_text='Serialized context state (JSON, UTF-8)')),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Stored Context State',
                'verbose_name_plural': 'Stored Context States',
                'ordering': ['key'],
            },
        ),
        migrations.CreateModel(
            name='NotificationRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=[('ready', 'Ready for imaging'), ('critical', 'Critical uptake time'), ('additionalReady', 'Additional imaging ready'), ('roomReady', 'Room patient ready'), ('bathroom', 'Bathroom break'), ('delayed', 'Imaging delayed'), ('lowStock', 'Low stock')], max_length=30)),
                ('patient_id', models.CharField(blank=True, db_index=True, help_text='Empty for stock alerts', max_length=40)),
                ('patient_name', models.CharField(blank=True, max_length=200)),
                ('isotope_id', models.CharField(blank=True, help_text='Isotope context the alert came from', max_length=20)),
                ('context', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder, help_text='Room, elapsed minutes, region and similar details')),
                ('raised_at', models.DateTimeField(help_text='Tick time at which the threshold crossing was detected')),
                ('acknowledged', models.BooleanField(default=False)),
            ],
            options={
                'verbose_name': 'Notification',
                'verbose_name_plural': 'Notifications',
                'ordering': ['-raised_at'],
            },
        ),
        migrations.CreateModel(
            name='AuditEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[('vial_added', 'Vial added'), ('vial_removed', 'Vial removed'), ('waste_disposed', 'Waste disposed'), ('waste_bin_added', 'Waste bin added'), ('waste_bin_sealed', 'Waste bin sealed'), ('waste_bin_emptied', 'Waste bin emptied'), ('generator_added', 'Generator added'), ('generator_eluted', 'Generator eluted'), ('generator_removed', 'Generator removed'), ('patient_injected', 'Patient injected'), ('room_assigned', 'Room assigned'), ('room_released', 'Room released'), ('imaging_started', 'Imaging started'), ('imaging_finished', 'Imaging finished'), ('additional_imaging_requested', 'Additional imaging requested'), ('additional_imaging_cancelled', 'Additional imaging cancelled')], max_length=40)),
                ('resource', models.CharField(help_text='Entity type: vial, waste_bin, generator, patient, room', max_length=40)),
                ('resource_id', models.CharField(blank=True, max_length=40)),
                ('changes', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Audit Entry',
                'verbose_name_plural': 'Audit Entries',
                'ordering': ['-created_at'],
            },
        ),
    ]
