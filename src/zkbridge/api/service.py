import os
import time

import psutil
from flask import Blueprint, current_app, jsonify

from zkbridge.shared.logger import app_logger

bp = Blueprint('service', __name__, url_prefix='/')


def _bridge():
    return current_app.config["BRIDGE_SERVICE"]


@bp.route('/service/status', methods=['GET'])
def service_status():
    """Process health plus engine/listener state"""
    try:
        process = psutil.Process(os.getpid())
        bridge = _bridge()

        return jsonify({
            'status': 'running',
            'service_name': bridge.config.service_name,
            'pid': process.pid,
            'memory_usage': process.memory_info().rss / 1024 / 1024,  # MB
            'cpu_percent': process.cpu_percent(),
            'uptime': time.time() - process.create_time(),
            'threads': process.num_threads(),
            'sync_running': bool(bridge.engine and bridge.engine.is_running),
            'push_listening': bool(bridge.listener and bridge.listener.is_running),
        })
    except Exception as e:
        app_logger.error(f"Error getting service status: {e}")
        return jsonify({'error': str(e)}), 500


@bp.route('/sync/status', methods=['GET'])
def sync_status():
    """Watermark, dedup index size and last cycle outcome"""
    bridge = _bridge()
    if bridge.engine is None:
        return jsonify({'success': False, 'error': 'Polling sync is not configured'}), 404

    engine = bridge.engine
    last_result = engine.last_result
    return jsonify({
        'success': True,
        'state': engine.state.snapshot(),
        'job': engine.get_job_status(),
        'cycle_in_progress': engine.cycle_in_progress,
        'last_result': last_result.to_dict() if last_result else None,
    })


@bp.route('/sync/trigger', methods=['POST'])
def trigger_sync():
    """Run one sync cycle now and return its outcome"""
    bridge = _bridge()
    if bridge.engine is None:
        return jsonify({'success': False, 'error': 'Polling sync is not configured'}), 404

    result = bridge.engine.run_cycle()
    if result.skipped:
        return jsonify({
            'success': False,
            'error': 'A sync cycle is already in progress',
        }), 409

    return jsonify({'success': result.success, 'result': result.to_dict()})


@bp.route('/service/start', methods=['POST'])
def start_service():
    try:
        _bridge().start()
        return jsonify({'success': True, 'message': 'Bridge started'})
    except Exception as e:
        app_logger.error(f"Error starting bridge: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/service/stop', methods=['POST'])
def stop_service():
    try:
        _bridge().stop()
        return jsonify({'success': True, 'message': 'Bridge stopped'})
    except Exception as e:
        app_logger.error(f"Error stopping bridge: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500
