import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the account was created.', verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the account was last updated.', verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Bicycle',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(help_text='Title of the listing', max_length=255, verbose_name='title')),
                ('price', models.DecimalField(decimal_places=2, help_text='Asking price in NT$', max_digits=10, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'), message='Price must be greater than 0.')], verbose_name='price')),
                ('status', models.CharField(choices=[('pending', 'Pending review'), ('available', 'Available'), ('reserved', 'Reserved'), ('sold', 'Sold'), ('draft', 'Draft')], default='pending', help_text='Listing lifecycle status', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('seller', models.ForeignKey(help_text='User selling this bicycle', on_delete=django.db.models.deletion.CASCADE, related_name='bicycles', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'bicycle',
                'verbose_name_plural': 'bicycles',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['seller'], name='core_bicycl_seller__idx'),
                    models.Index(fields=['status'], name='core_bicycl_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('content', models.TextField(verbose_name='content')),
                ('is_offer', models.BooleanField(default=False, help_text='Whether this message is a price offer', verbose_name='is offer')),
                ('offer_amount', models.DecimalField(blank=True, decimal_places=2, help_text='Offered price in NT$ (offers only)', max_digits=10, null=True, verbose_name='offer amount')),
                ('offer_status', models.CharField(blank=True, choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected'), ('expired', 'Expired')], help_text='Offer lifecycle status (offers only)', max_length=20, null=True, verbose_name='offer status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('bicycle', models.ForeignKey(help_text='Bicycle the conversation is about', on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='core.bicycle')),
                ('recipient', models.ForeignKey(help_text='User who receives the message', on_delete=django.db.models.deletion.CASCADE, related_name='received_messages', to=settings.AUTH_USER_MODEL)),
                ('sender', models.ForeignKey(help_text='User who sent the message', on_delete=django.db.models.deletion.CASCADE, related_name='sent_messages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'message',
                'verbose_name_plural': 'messages',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['bicycle', 'offer_status'], name='core_messag_bicycle_idx'),
                    models.Index(fields=['sender', 'recipient', 'bicycle'], name='core_messag_sender__idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_offer', True), ('offer_status', 'pending')), fields=('sender', 'recipient', 'bicycle'), name='unique_pending_offer_per_buyer_bicycle'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_number', models.CharField(help_text='Human-readable unique order number', max_length=32, unique=True, verbose_name='order number')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('shipped', 'Shipped'), ('delivered', 'Delivered'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('refunded', 'Refunded')], default='pending', max_length=20, verbose_name='status')),
                ('subtotal', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='subtotal')),
                ('shipping_cost', models.DecimalField(decimal_places=2, default=decimal.Decimal('0'), max_digits=12, verbose_name='shipping cost')),
                ('tax', models.DecimalField(decimal_places=2, default=decimal.Decimal('0'), max_digits=12, verbose_name='tax')),
                ('total_price', models.DecimalField(decimal_places=2, help_text='subtotal + shipping cost + tax', max_digits=12, verbose_name='total price')),
                ('shipping_method', models.CharField(choices=[('self_pickup', 'Self pickup'), ('assisted_delivery', 'Assisted delivery')], default='assisted_delivery', max_length=20, verbose_name='shipping method')),
                ('shipping_distance', models.PositiveIntegerField(blank=True, help_text='Delivery distance in km, if known', null=True, verbose_name='shipping distance')),
                ('shipping_address', models.JSONField(blank=True, default=dict, verbose_name='shipping address')),
                ('payment_deadline', models.DateTimeField(verbose_name='payment deadline')),
                ('expires_at', models.DateTimeField(help_text='Unpaid orders are cancelled after this time', verbose_name='expires at')),
                ('cancel_reason', models.TextField(blank=True, default='', verbose_name='cancel reason')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='completed at')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True, verbose_name='cancelled at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('bicycle', models.ForeignKey(help_text='Bicycle being purchased', on_delete=django.db.models.deletion.CASCADE, related_name='orders', to='core.bicycle')),
                ('buyer', models.ForeignKey(help_text='User buying the bicycle', on_delete=django.db.models.deletion.CASCADE, related_name='orders', to=settings.AUTH_USER_MODEL)),
                ('offer', models.ForeignKey(blank=True, help_text='Accepted offer this order was created from, if any', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='orders', to='core.message')),
            ],
            options={
                'verbose_name': 'order',
                'verbose_name_plural': 'orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['buyer'], name='core_order_buyer_idx'),
                    models.Index(fields=['bicycle'], name='core_order_bicycle_idx'),
                    models.Index(fields=['status'], name='core_order_status_idx'),
                    models.Index(fields=['expires_at'], name='core_order_expires_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['pending', 'processing'])), fields=('bicycle',), name='unique_active_order_per_bicycle'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderPayment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('awaiting_confirmation', 'Awaiting confirmation'), ('paid', 'Paid'), ('failed', 'Failed'), ('refunded', 'Refunded')], default='pending', max_length=30, verbose_name='status')),
                ('method', models.CharField(choices=[('bank_transfer', 'Bank transfer'), ('credit_card', 'Credit card'), ('paypal', 'PayPal'), ('cash_on_delivery', 'Cash on delivery')], default='bank_transfer', max_length=30, verbose_name='method')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'), message='Amount must be greater than 0.')], verbose_name='amount')),
                ('deadline', models.DateTimeField(verbose_name='deadline')),
                ('expires_at', models.DateTimeField(verbose_name='expires at')),
                ('instructions', models.JSONField(blank=True, default=dict, help_text='Bank transfer instructions shown to the buyer', verbose_name='instructions')),
                ('paid_at', models.DateTimeField(blank=True, null=True, verbose_name='paid at')),
                ('failed_at', models.DateTimeField(blank=True, null=True, verbose_name='failed at')),
                ('refunded_at', models.DateTimeField(blank=True, null=True, verbose_name='refunded at')),
                ('failure_reason', models.CharField(blank=True, default='', max_length=255, verbose_name='failure reason')),
                ('proof_status', models.CharField(choices=[('none', 'No proof'), ('pending', 'Pending review'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='none', max_length=20, verbose_name='proof status')),
                ('proof_filename', models.CharField(blank=True, default='', max_length=255, verbose_name='proof filename')),
                ('proof_content_type', models.CharField(blank=True, default='', max_length=100, verbose_name='proof content type')),
                ('proof_size', models.PositiveIntegerField(blank=True, null=True, verbose_name='proof size')),
                ('proof_note', models.TextField(blank=True, default='', verbose_name='proof note')),
                ('proof_account_last_five', models.CharField(blank=True, default='', max_length=5, verbose_name='account last five digits')),
                ('proof_uploaded_at', models.DateTimeField(blank=True, null=True, verbose_name='proof uploaded at')),
                ('proof_reviewed_at', models.DateTimeField(blank=True, null=True, verbose_name='proof reviewed at')),
                ('proof_review_notes', models.TextField(blank=True, default='', verbose_name='proof review notes')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('order', models.OneToOneField(help_text='Order this payment belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='payment', to='core.order')),
                ('proof_reviewed_by', models.ForeignKey(blank=True, help_text='Admin who reviewed the payment proof', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_payments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'order payment',
                'verbose_name_plural': 'order payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='core_orderp_status_idx'),
                    models.Index(fields=['expires_at'], name='core_orderp_expires_idx'),
                ],
            },
        ),
    ]
