"""
Indexer API Blueprint.

Handles triggering and monitoring index builds.
"""

import logging
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from mediaindex.indexer.builder import BUILD_MODES, IndexBuilder
from mediaindex.indexer.context import BuildContext
from mediaindex.indexer.runner import get_runner

logger = logging.getLogger(__name__)
indexer_bp = Blueprint('indexer', __name__)


def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return None


def _build_context(data: dict) -> BuildContext:
    """Site from the request, falling back to the configured site."""
    config = current_app.config['MEDIAINDEX_CONFIG']
    return BuildContext.from_config(
        config,
        org=data.get('org'),
        repo=data.get('repo'),
        ref=data.get('ref'),
        token=_bearer_token(),
    )


@indexer_bp.route('/index', methods=['POST'])
def api_trigger_index():
    """
    Trigger an index build.

    Request body (all optional):
    - org, repo, ref: Site to index (defaults from configuration)
    - mode: auto, full or incremental (default: auto)
    - background: Run in background (default: true)

    Returns:
    - status: "started" for background builds, "completed" otherwise
    - 409 if a build is already running
    """
    data = request.get_json(silent=True) or {}
    mode = data.get('mode', 'auto')
    background = data.get('background', True)

    if mode not in BUILD_MODES:
        return jsonify({'error': f'Unknown mode: {mode}'}), 400

    try:
        context = _build_context(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    runner = get_runner()
    if not runner.start(context, mode, background=background):
        return jsonify({
            'error': 'Build already running',
            'progress': runner.snapshot()['progress'],
        }), 409

    if background:
        return jsonify({
            'status': 'started',
            'success': True,
            'message': f'Build started in background for {context.site_path}',
            'mode': mode,
        })

    result = runner.last_result or {}
    if not result.get('success'):
        return jsonify({'error': result.get('error') or 'Build failed'}), 500
    return jsonify({
        'status': 'completed',
        'success': True,
        'message': f"Build complete for {context.site_path}",
        'entries': result['entries'],
        'duration': result['duration'],
    })


@indexer_bp.route('/index/status')
def api_index_status():
    """Runner state plus the persisted build metadata."""
    status = get_runner().snapshot()
    try:
        context = _build_context(request.args)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    status['index'] = IndexBuilder(context).get_index_status()
    return jsonify(status)


@indexer_bp.route('/index/mode')
def api_index_mode():
    """Whether the next auto build would be incremental."""
    try:
        context = _build_context(request.args)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(IndexBuilder(context).should_reindex())
