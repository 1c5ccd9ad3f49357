from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ConsumedNonce',
            fields=[
                ('id', models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('owner', models.CharField(max_length=255)),
                ('value', models.CharField(max_length=50)),
                ('expires', models.DateTimeField(db_index=True)),
            ],
            options={
                'unique_together': {('owner', 'value')},
            },
        ),
    ]
