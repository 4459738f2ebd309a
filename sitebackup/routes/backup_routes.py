"""
Backup routes - build a backup and stream it to the requester.
"""

import os
import logging

from flask import Blueprint, jsonify, send_file, current_app
from flask_login import login_required

from sitebackup.backup.archive import generate_archive_filename, DEFAULT_ARCHIVE_NAME_MASK
from sitebackup.backup.executor import run_backup, BackupError


logger = logging.getLogger(__name__)

bp = Blueprint('backup', __name__, url_prefix='/api/backup')


def _open_and_unlink(path: str):
    """
    Open the archive for reading and remove its directory entry.

    The open handle keeps the data readable until the response has been
    sent; the file is gone from TEMP_DIR as soon as the handle is closed.
    """
    archive = open(path, 'rb')
    try:
        os.remove(path)
    except OSError as e:
        logger.error(f"Failed to remove temporary archive {path}: {e}")
    return archive


@bp.route('/download', methods=['GET'])
@login_required
def download_backup():
    """
    Build a backup archive and send it as an attachment.

    Returns:
        Zip archive (application/octet-stream), or JSON error with status 500
    """
    try:
        result = run_backup(current_app.config)
    except BackupError as e:
        logger.error(f"Backup failed: {e}")
        return jsonify({'error': f'Backup failed: {e}'}), 500

    mask = current_app.config.get('BACKUP_ARCHIVE_NAME_MASK') or DEFAULT_ARCHIVE_NAME_MASK
    filename = generate_archive_filename(mask)

    archive = _open_and_unlink(result.archive_path)

    response = send_file(
        archive,
        mimetype='application/octet-stream',
        as_attachment=True,
        download_name=filename,
        max_age=0
    )
    response.content_length = result.size
    response.headers['Cache-Control'] = 'must-revalidate'
    response.headers['Expires'] = '0'
    response.headers['X-Backup-Databases'] = str(len(result.succeeded))
    response.headers['X-Backup-Warnings'] = str(len(result.warnings))

    logger.info(f"Sending backup {filename} ({result.size} bytes, {len(result.warnings)} warnings)")
    return response
