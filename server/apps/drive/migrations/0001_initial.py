import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Folder',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('depth', models.PositiveIntegerField(default=0, help_text='Distance from the owner root (0 for top-level folders)')),
                ('status', models.CharField(choices=[('active', 'Active'), ('trashed', 'Trashed')], db_index=True, default='active', max_length=16)),
                ('trashed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='folders', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='children', to='drive.folder')),
            ],
            options={
                'verbose_name': 'Folder',
                'verbose_name_plural': 'Folders',
                'ordering': ['name'],
                'indexes': [models.Index(fields=['owner', 'parent', 'status'], name='folders_owner_parent_idx')],
                'constraints': [models.CheckConstraint(condition=models.Q(models.Q(('depth', 0), ('parent__isnull', True)), models.Q(('depth__gt', 0), ('parent__isnull', False)), _connector='OR'), name='folders_depth_matches_parent')],
            },
        ),
        migrations.CreateModel(
            name='AncestorPath',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('relative_depth', models.PositiveIntegerField()),
                ('ancestor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='descendant_paths', to='drive.folder')),
                ('descendant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ancestor_paths', to='drive.folder')),
            ],
            options={
                'verbose_name': 'Ancestor Path',
                'verbose_name_plural': 'Ancestor Paths',
                'indexes': [
                    models.Index(fields=['descendant', 'relative_depth'], name='paths_descendant_depth_idx'),
                    models.Index(fields=['ancestor', 'relative_depth'], name='paths_ancestor_depth_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('ancestor', 'descendant'), name='paths_ancestor_descendant_unique'),
                    models.UniqueConstraint(fields=('descendant', 'relative_depth'), name='paths_descendant_depth_unique'),
                    models.CheckConstraint(condition=models.Q(models.Q(('ancestor', models.F('descendant')), ('relative_depth', 0)), models.Q(models.Q(('ancestor', models.F('descendant')), _negated=True), ('relative_depth__gt', 0)), _connector='OR'), name='paths_self_row_at_zero'),
                ],
            },
        ),
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('mime_type', models.CharField(max_length=255)),
                ('size_bytes', models.BigIntegerField(help_text='Declared size while uploading, size of current version after')),
                ('current_version', models.PositiveIntegerField(default=0, help_text='0 until the first upload completes')),
                ('status', models.CharField(choices=[('uploading', 'Uploading'), ('active', 'Active'), ('trashed', 'Trashed')], db_index=True, default='uploading', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('folder', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='files', to='drive.folder')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='drive_files', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['name'],
                'indexes': [models.Index(fields=['folder', 'status'], name='files_folder_status_idx')],
            },
        ),
        migrations.CreateModel(
            name='FileVersion',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('version_number', models.PositiveIntegerField()),
                ('size_bytes', models.BigIntegerField()),
                ('checksum', models.CharField(help_text='Checksum reported by the object backend (etag)', max_length=128)),
                ('version_marker', models.CharField(blank=True, default='', help_text='Object backend version identifier', max_length=255)),
                ('storage_key', models.CharField(max_length=1024)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('file', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='versions', to='drive.file')),
                ('uploaded_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'File Version',
                'verbose_name_plural': 'File Versions',
                'ordering': ['-version_number'],
                'constraints': [
                    models.UniqueConstraint(fields=('file', 'version_number'), name='versions_file_number_unique'),
                    models.CheckConstraint(condition=models.Q(('version_number__gte', 1)), name='versions_number_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ArchivedFile',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('original_folder_id', models.UUIDField()),
                ('original_path', models.CharField(help_text='Display path at trash time, e.g. /docs/report.pdf', max_length=4096)),
                ('name', models.CharField(max_length=255)),
                ('mime_type', models.CharField(max_length=255)),
                ('size_bytes', models.BigIntegerField()),
                ('archived_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('expires_at', models.DateTimeField(db_index=True)),
                ('file', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='archive', to='drive.file')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='archived_files', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Archived File',
                'verbose_name_plural': 'Archived Files',
                'ordering': ['-archived_at'],
            },
        ),
        migrations.CreateModel(
            name='UploadSession',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('storage_key', models.CharField(help_text='Object key the upload is staged under', max_length=1024, unique=True)),
                ('multipart_upload_id', models.CharField(blank=True, default='', max_length=255)),
                ('total_size', models.BigIntegerField()),
                ('part_size', models.BigIntegerField()),
                ('total_parts', models.PositiveIntegerField(default=1)),
                ('uploaded_parts', models.PositiveIntegerField(default=0)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('aborted', 'Aborted'), ('expired', 'Expired')], db_index=True, default='pending', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('expires_at', models.DateTimeField(db_index=True)),
                ('file', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='upload_sessions', to='drive.file')),
                ('folder', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='drive.folder')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='upload_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Upload Session',
                'verbose_name_plural': 'Upload Sessions',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'expires_at'], name='uploads_status_expiry_idx')],
            },
        ),
        migrations.CreateModel(
            name='UploadPart',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('part_number', models.PositiveIntegerField()),
                ('etag', models.CharField(max_length=128)),
                ('size_bytes', models.BigIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='parts', to='drive.uploadsession')),
            ],
            options={
                'verbose_name': 'Upload Part',
                'verbose_name_plural': 'Upload Parts',
                'ordering': ['part_number'],
                'constraints': [models.UniqueConstraint(fields=('session', 'part_number'), name='parts_session_number_unique')],
            },
        ),
    ]
