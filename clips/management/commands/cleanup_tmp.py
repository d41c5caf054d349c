"""
Management command to clean up abandoned tmp directories.

Finds and removes tmp-{request_id} directories left behind when a worker
was killed before the pipeline could clean up after itself.
"""
import shutil
from datetime import datetime, timedelta
from pathlib import Path

from django.core.management.base import BaseCommand

from clips.service.config import get_log_dir, get_tmp_dir


def plural(count):
    return 'ies' if count != 1 else 'y'


class Command(BaseCommand):
    help = 'Clean up abandoned tmp-{request_id} directories from interrupted edit requests'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting'
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Delete tmp directories without confirmation'
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=60,
            help='Maximum age in minutes before considering tmp directory abandoned (default: 60)'
        )

    def handle(self, *args, **options):
        """Find and clean up abandoned tmp directories"""
        dry_run = options['dry_run']
        force = options['force']
        max_age_minutes = options['max_age']

        tmp_root = Path(get_tmp_dir())
        tmp_dirs = [d for d in tmp_root.glob('tmp-*') if d.is_dir()] if tmp_root.exists() else []

        if not tmp_dirs:
            self.stdout.write(self.style.SUCCESS('No tmp directories found'))
            return

        now = datetime.now()
        max_age = timedelta(minutes=max_age_minutes)
        old_tmp_dirs = []

        for tmp_dir in tmp_dirs:
            dir_age = now - datetime.fromtimestamp(tmp_dir.stat().st_mtime)
            if dir_age <= max_age:
                continue

            old_tmp_dirs.append({
                'path': tmp_dir,
                'request_id': tmp_dir.name[4:],  # Remove 'tmp-' prefix
                'age': dir_age,
            })

        if not old_tmp_dirs:
            self.stdout.write(self.style.SUCCESS(
                f'Found {len(tmp_dirs)} tmp director{plural(len(tmp_dirs))}, '
                f'but none are older than {max_age_minutes} minutes'
            ))
            return

        self.stdout.write(f'\nFound {len(old_tmp_dirs)} abandoned tmp director{plural(len(old_tmp_dirs))}:')
        self.stdout.write('=' * 80)

        log_dir = get_log_dir()
        total_size = 0
        for info in old_tmp_dirs:
            dir_size = sum(f.stat().st_size for f in info['path'].rglob('*') if f.is_file())
            total_size += dir_size

            age_str = str(info['age']).split('.')[0]  # Remove microseconds
            size_mb = dir_size / (1024 * 1024)

            self.stdout.write(f"\n{info['path'].name:40} | Age: {age_str:15} | Size: {size_mb:6.1f} MB")

            # Last line of the request log written by the task
            log_file = log_dir / f"{info['request_id']}.log"
            lines = log_file.read_text(errors='replace').splitlines() if log_file.exists() else []
            if lines and lines[-1].strip():
                self.stdout.write(f'        Last log: {lines[-1].strip()[:60]}...')
            else:
                self.stdout.write('        Last log: none')

        self.stdout.write('\n' + '=' * 80)
        self.stdout.write(f'Total size: {total_size / (1024 * 1024):.1f} MB\n')

        if dry_run:
            self.stdout.write(self.style.WARNING(
                f'\nDRY RUN: Would delete {len(old_tmp_dirs)} director{plural(len(old_tmp_dirs))}'
            ))
            self.stdout.write('Run without --dry-run to actually delete')
            return

        if not force:
            response = input(f'\nDelete these {len(old_tmp_dirs)} director{plural(len(old_tmp_dirs))}? [y/N]: ')
            if response.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        deleted_count = 0
        for info in old_tmp_dirs:
            try:
                shutil.rmtree(info['path'])
            except OSError as e:
                self.stdout.write(self.style.ERROR(f"✗ Failed to delete {info['path'].name}: {e}"))
                continue
            self.stdout.write(self.style.SUCCESS(f"✓ Deleted: {info['path'].name}"))
            deleted_count += 1

        self.stdout.write(self.style.SUCCESS(
            f'\n✓ Deleted {deleted_count} of {len(old_tmp_dirs)} tmp director{plural(deleted_count)}'
        ))
