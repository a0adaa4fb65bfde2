"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating, evaluating and deleting networks
- Growing, shrinking and stretching layers of a live network
- Training networks with real-time progress updates via WebSockets,
  with pause, resume and stop between blocks
- Persisting networks to/from `.brain` files

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
"""

import os
import sys
import uuid
import logging
from typing import Dict, Any, List, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from brainlib.activations import normalize_input
from brainlib.config import TrainingConfig
from brainlib.errors import (
    BrainError,
    ConfigurationError,
    ConstructionError,
    CorruptFileError,
    MissingFileError,
    ShapeError,
)
from brainlib.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
)
from brainlib.network import Network
from brainlib.training import (
    SessionState,
    Trainer,
    TrainingSession,
    dataset_extractor,
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('brainlib').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO pushes training updates to connected clients
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

MODEL_DIR = os.getenv('MODEL_DIR', 'models')

# Blocks between two 'training_update' events
UPDATE_EVERY_BLOCKS = int(os.getenv('TRAINING_UPDATE_EVERY', '10'))

# Seconds a paused training task sleeps before checking its session again
PAUSE_POLL_SECONDS = 0.1

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the model directory into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks(MODEL_DIR)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        if 'error' in net_info:
            logger.warning(f"Failed to load network {network_id}: {net_info['error']}")
            continue
        try:
            net = load_network(network_id, MODEL_DIR)
        except BrainError as e:
            logger.warning(f"Failed to load network {network_id}: {e}")
            continue
        active_networks[network_id] = _network_info(net)
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from {MODEL_DIR}")


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Job statuses that no longer hold a running task
FINISHED_JOB_STATUSES = frozenset({'completed', 'stopped', 'failed'})

# Seconds between two passes of the job cleanup task
JOB_CLEANUP_SECONDS = int(os.getenv('JOB_CLEANUP_SECONDS', '3600'))

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_finished_training_jobs() -> int:
    """
    Remove completed, stopped or failed training jobs from memory.

    Returns:
        Number of jobs removed
    """
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in FINISHED_JOB_STATUSES
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")
    return len(jobs_to_remove)


def drop_network_jobs(network_id: str) -> int:
    """
    Stop and forget every training job of a network.

    Returns:
        Number of jobs removed
    """
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info['network_id'] == network_id
    ]

    for job_id in jobs_to_remove:
        training_jobs.pop(job_id)['session'].stop()

    if jobs_to_remove:
        logger.info(f"Dropped {len(jobs_to_remove)} training job(s) of network {network_id}")
    return len(jobs_to_remove)


def cleanup_training_jobs_task() -> None:
    """
    Background task that removes finished training jobs immediately on
    startup, then every JOB_CLEANUP_SECONDS.
    """
    logger.info("Training job cleanup task started")

    while True:
        try:
            cleanup_finished_training_jobs()
        except Exception as e:
            logger.exception(f"Error during training job cleanup: {e}")
        gevent.sleep(JOB_CLEANUP_SECONDS)


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    This function is idempotent - calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info(f"Starting cleanup task (runs immediately, then every {JOB_CLEANUP_SECONDS} seconds)")
    gevent.spawn(cleanup_training_jobs_task)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def _network_info(net: Network) -> Dict[str, Any]:
    return {
        'network': net,
        'architecture': net.layer_counts,
        'activation': net.activation.name,
        'trained': False,
        'mean_squared_error': None,
        'job_id': None,
    }


def _network_view(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'architecture': net.layer_counts,
        'activation': net.activation.name,
        'trained': info['trained'],
        'mean_squared_error': info['mean_squared_error'],
        'status': 'in_memory',
    }


def _job_view(job_id: str, job: Dict[str, Any]) -> Dict[str, Any]:
    view = {
        'job_id': job_id,
        'network_id': job['network_id'],
        'status': job['status'],
        'blocks': job['blocks'],
        'progress': job['progress'],
    }
    view.update(job['session'].status())
    return view


def brain_error_response(error: BrainError) -> Tuple[Any, int]:
    """
    Translate a library error into a JSON error response.

    - ShapeError, ConstructionError, ConfigurationError: 400
    - MissingFileError: 404
    - CorruptFileError: 422
    """
    if isinstance(error, MissingFileError):
        code = 404
    elif isinstance(error, CorruptFileError):
        code = 422
    elif isinstance(error, (ShapeError, ConstructionError, ConfigurationError)):
        code = 400
    else:
        code = 500
    logger.warning(f"Request failed with {code}: {error}")
    return jsonify({
        'error': str(error),
        'error_type': type(error).__name__,
    }), code


def _not_found(what: str, identifier: str) -> Tuple[Any, int]:
    logger.warning(f"{what} not found: {identifier}")
    return jsonify({'error': f'{what} not found'}), 404


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active networks and training jobs that are
    currently training or paused.
    """
    active_statuses = ('pending', 'training', 'paused')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network with random normal parameters.

    Request body:
        {
            'layer_counts': [2, 3, 1],
            'activation': 'logistic',   # optional
            'seed': 42                  # optional
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layer_counts = data.get('layer_counts')

    if not isinstance(layer_counts, list) or len(layer_counts) < 2:
        logger.warning(f"Invalid architecture requested: {layer_counts}")
        return jsonify({
            'error': 'Invalid architecture. Must have at least 2 layers.'
        }), 400

    seed = data.get('seed')

    try:
        rng = np.random.default_rng(seed) if seed is not None else None
        net = Network.from_layer_counts(
            layer_counts, activation=data.get('activation'), rng=rng
        )
    except BrainError as e:
        return brain_error_response(e)
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid architecture: {e}'}), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = _network_info(net)

    logger.info(f"Created network {network_id} with architecture {net.layer_counts}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.layer_counts,
        'activation': net.activation.name,
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        _network_view(nid, info) for nid, info in active_networks.items()
    ]

    # Saved networks, excluding duplicates already in memory
    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    drop_network_jobs(network_id)

    deleted_from_memory = active_networks.pop(network_id, None) is not None

    try:
        deleted_from_disk = delete_network(network_id, MODEL_DIR)
    except ConfigurationError:
        deleted_from_disk = False

    if not deleted_from_memory and not deleted_from_disk:
        return _not_found('Network', network_id)

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """
    Evaluate a network on one input vector.

    Request body:
        {
            'input': [0.5, 0.25],
            'normalize': 'raw'      # optional: raw, logistic or sech
        }

    Returns:
        JSON with the output vector
    """
    if network_id not in active_networks:
        return _not_found('Network', network_id)

    data = request.get_json(silent=True) or {}
    if 'input' not in data:
        return jsonify({'error': "Request body needs an 'input' vector"}), 400

    net = active_networks[network_id]['network']
    try:
        values = normalize_input(data['input'], data.get('normalize', 'raw'))
        output = net.evaluate(values)
    except BrainError as e:
        return brain_error_response(e)
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid input: {e}'}), 400

    return jsonify({
        'network_id': network_id,
        'output': array_to_float_list(output)
    }), 200


@app.route('/api/networks/<network_id>/topology', methods=['POST'])
def change_topology(network_id: str):
    """
    Change the width of one neuron layer.

    Request body:
        {
            'operation': 'expand' | 'shrink' | 'stretch',
            'layer': 1,
            'amount': 2,            # neurons for expand/shrink, factor for stretch
            'group_width': 1        # stretch only
        }

    Returns:
        JSON with 'changed' and the new architecture
    """
    if network_id not in active_networks:
        return _not_found('Network', network_id)

    data = request.get_json(silent=True) or {}
    operation = data.get('operation')
    layer = data.get('layer')
    amount = data.get('amount')
    group_width = data.get('group_width', 1)

    if operation not in ('expand', 'shrink', 'stretch'):
        return jsonify({
            'error': "operation must be 'expand', 'shrink' or 'stretch'"
        }), 400
    for name, value in (('layer', layer), ('amount', amount),
                        ('group_width', group_width)):
        if not isinstance(value, int) or isinstance(value, bool):
            return jsonify({'error': f'{name} must be an integer'}), 400

    info = active_networks[network_id]
    net = info['network']
    try:
        if operation == 'expand':
            changed = net.expand_layer(layer, amount)
        elif operation == 'shrink':
            changed = net.shrink_layer(layer, amount)
        else:
            changed = net.stretch_layer(layer, amount, group_width)
    except BrainError as e:
        return brain_error_response(e)

    info['architecture'] = net.layer_counts
    logger.info(
        f"Topology {operation} on network {network_id} layer {layer}: "
        f"changed={changed}, architecture={net.layer_counts}"
    )

    return jsonify({
        'network_id': network_id,
        'operation': operation,
        'changed': changed,
        'architecture': net.layer_counts
    }), 200


@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_network_endpoint(network_id: str):
    """
    Save an in-memory network to the model directory.

    Request body (optional):
        {'mode': 'plain'}  # or 'legacy'
    """
    if network_id not in active_networks:
        return _not_found('Network', network_id)

    data = request.get_json(silent=True) or {}
    mode = data.get('mode', 'plain')

    try:
        save_network(
            active_networks[network_id]['network'], network_id, MODEL_DIR, mode
        )
        metadata = get_network_metadata(network_id, MODEL_DIR)
    except BrainError as e:
        return brain_error_response(e)

    return jsonify(metadata), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_network_endpoint(network_id: str):
    """
    Load a saved network into memory, replacing any in-memory copy.

    Request body (optional):
        {'activation': 'logistic'}
    """
    data = request.get_json(silent=True) or {}

    info = active_networks.get(network_id)
    if info is not None and info['job_id'] is not None:
        job = training_jobs.get(info['job_id'])
        if job is not None and job['status'] in ('pending', 'training', 'paused'):
            return jsonify({'error': 'Network is being trained'}), 409

    try:
        net = load_network(network_id, MODEL_DIR, data.get('activation'))
    except BrainError as e:
        return brain_error_response(e)

    active_networks[network_id] = _network_info(net)
    return jsonify(_network_view(network_id, active_networks[network_id])), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'inputs': [[0, 0], [0, 1], [1, 0], [1, 1]],
            'targets': [[0], [1], [1], [0]],
            'blocks': 1000,                 # optional, default 100
            'config': {'momentum': 0.9}     # optional TrainingConfig fields
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        return _not_found('Network', network_id)

    info = active_networks[network_id]
    if info['job_id'] is not None:
        running = training_jobs.get(info['job_id'])
        if running is not None and running['status'] in ('pending', 'training', 'paused'):
            return jsonify({'error': 'Network is already being trained'}), 409

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    targets = data.get('targets')
    blocks = data.get('blocks', 100)
    config_data = data.get('config') or {}

    if not isinstance(inputs, list) or not isinstance(targets, list):
        return jsonify({'error': 'inputs and targets must be lists'}), 400
    if not isinstance(blocks, int) or isinstance(blocks, bool) or blocks < 1:
        return jsonify({'error': 'blocks must be a positive integer'}), 400
    if not isinstance(config_data, dict):
        return jsonify({'error': 'config must be an object'}), 400

    net = info['network']
    try:
        config = TrainingConfig.from_dict(config_data)
        # Validate every example before training starts
        for x, y in zip(inputs, targets):
            net.compute_gradients(x, y)
        extractor = dataset_extractor(inputs, targets)
        if 'activation' in config_data:
            net.activation = config.activation
    except BrainError as e:
        return brain_error_response(e)
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid training data: {e}'}), 400

    trainer = Trainer(net, config, data_extractor=extractor)
    session = TrainingSession(trainer)
    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'blocks': blocks,
        'session': session,
    }
    info['job_id'] = job_id

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"blocks={blocks}, examples={len(inputs)}, config={config.to_dict()}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(train_network_task, network_id, job_id)

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(network_id: str, job_id: str) -> None:
    """
    Background task that trains a network block by block.

    Yields to other greenlets after every block so HTTP requests (pause,
    resume, stop, topology edits) are served while training runs. Sends
    progress updates via WebSocket.
    """
    job = training_jobs[job_id]
    session: TrainingSession = job['session']
    blocks = job['blocks']

    try:
        logger.info(f"Starting training for job {job_id}")
        # A job can be stopped before its task is scheduled
        if session.state is SessionState.IDLE:
            session.start()

        while True:
            learned = session.advance(max_blocks=blocks)
            if learned:
                job['status'] = 'training'
                job['progress'] = session.blocks_run / blocks * 100
                if session.blocks_run % UPDATE_EVERY_BLOCKS == 0:
                    status = session.status()
                    socketio.emit('training_update', {
                        'job_id': job_id,
                        'network_id': network_id,
                        'blocks_run': status['blocks_run'],
                        'blocks': blocks,
                        'mean_squared_error': status['mean_squared_error'],
                        'progress': job['progress']
                    })
                # Let gevent serve other requests
                gevent.sleep(0)
            elif session.state is SessionState.PAUSED:
                job['status'] = 'paused'
                gevent.sleep(PAUSE_POLL_SECONDS)
            else:
                break

        status = session.status()
        finished = session.blocks_run >= blocks
        job['status'] = 'completed' if finished else 'stopped'

        info = active_networks.get(network_id)
        if info is not None and status['blocks_run'] > 0:
            info['trained'] = True
            info['mean_squared_error'] = status['mean_squared_error']

        logger.info(
            f"Training {job['status']} for job {job_id} after "
            f"{status['blocks_run']} blocks: mse={status['mean_squared_error']}"
        )

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': job['status'],
            'blocks_run': status['blocks_run'],
            'mean_squared_error': status['mean_squared_error'],
            'progress': job['progress']
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)

    finally:
        session.trainer.detach()


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id not in training_jobs:
        return _not_found('Training job', job_id)
    return jsonify(_job_view(job_id, training_jobs[job_id])), 200


@app.route('/api/training/<job_id>/<action>', methods=['POST'])
def control_training(job_id: str, action: str):
    """
    Pause, resume or stop a training job.

    Illegal transitions (e.g. resuming a job that is not paused) return 400.
    """
    if job_id not in training_jobs:
        return _not_found('Training job', job_id)

    job = training_jobs[job_id]
    session: TrainingSession = job['session']
    actions = {
        'pause': session.pause,
        'resume': session.resume,
        'stop': session.stop,
    }
    if action not in actions:
        return jsonify({'error': f'Unknown action {action}'}), 404

    try:
        actions[action]()
    except BrainError as e:
        return brain_error_response(e)

    if action == 'pause':
        job['status'] = 'paused'
    elif action == 'resume':
        job['status'] = 'training'
    logger.info(f"Training job {job_id}: {action}")

    return jsonify(_job_view(job_id, job)), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    reload_saved_networks()
    start_cleanup_task()

    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
