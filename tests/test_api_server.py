"""
test_api_server.py
~~~~~~~~~~~~~~~~~~

Tests for the REST API using Flask's test client.

Background training tasks are run synchronously and WebSocket events
are captured instead of being sent.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from brainlib import api_server
from brainlib.training import SessionState

XOR_INPUTS = [[0, 0], [0, 1], [1, 0], [1, 1]]
XOR_TARGETS = [[0], [1], [1], [0]]


@pytest.fixture
def events(monkeypatch):
    """Captured socketio events as (name, payload) tuples."""
    captured = []
    monkeypatch.setattr(
        api_server.socketio, 'emit',
        lambda event, data=None, **kwargs: captured.append((event, data))
    )
    return captured


@pytest.fixture
def client(tmp_path, monkeypatch, events):
    """Test client with an empty registry and a temporary model directory."""
    monkeypatch.setattr(api_server, 'MODEL_DIR', str(tmp_path / 'models'))
    monkeypatch.setattr(api_server, 'UPDATE_EVERY_BLOCKS', 1)
    monkeypatch.setattr(
        api_server.socketio, 'start_background_task',
        lambda target, *args, **kwargs: target(*args, **kwargs)
    )
    api_server.active_networks.clear()
    api_server.training_jobs.clear()
    api_server.app.config['TESTING'] = True
    with api_server.app.test_client() as test_client:
        yield test_client
    api_server.active_networks.clear()
    api_server.training_jobs.clear()


@pytest.fixture
def network_id(client):
    """Id of a freshly created [2, 3, 1] network."""
    response = client.post('/api/networks', json={
        'layer_counts': [2, 3, 1], 'activation': 'logistic', 'seed': 3
    })
    assert response.status_code == 201
    return response.get_json()['network_id']


@pytest.mark.unit
class TestNetworkEndpoints:
    """Test network creation, listing, evaluation and deletion."""

    def test_status(self, client):
        """Test that the status endpoint reports the server as online."""
        response = client.get('/api/status')
        assert response.status_code == 200
        assert response.get_json() == {
            'status': 'online', 'active_networks': 0, 'training_jobs': 0
        }

    def test_create_network(self, client):
        """Test creating a network returns its architecture."""
        response = client.post('/api/networks', json={'layer_counts': [4, 5, 2]})
        data = response.get_json()
        assert response.status_code == 201
        assert data['architecture'] == [4, 5, 2]
        assert data['activation'] == 'logistic'
        assert data['network_id'] in api_server.active_networks

    @pytest.mark.parametrize('body', [{}, {'layer_counts': [3]}, {'layer_counts': 'abc'}])
    def test_create_invalid_architecture(self, client, body):
        """Test that missing or short architectures return 400."""
        assert client.post('/api/networks', json=body).status_code == 400

    def test_create_zero_width_layer(self, client):
        """Test that a zero-width layer maps ConstructionError to 400."""
        response = client.post('/api/networks', json={'layer_counts': [2, 0, 1]})
        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'ConstructionError'

    def test_create_fractional_width_layer(self, client):
        """Test that a fractional layer width is rejected with 400."""
        response = client.post('/api/networks', json={'layer_counts': [2, 2.9, 1]})
        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'ConstructionError'
        assert api_server.active_networks == {}

    def test_create_unknown_activation(self, client):
        """Test that an unknown activation maps to 400."""
        response = client.post('/api/networks', json={
            'layer_counts': [2, 1], 'activation': 'relu'
        })
        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'ConfigurationError'

    def test_evaluate(self, client, network_id):
        """Test evaluating returns one value per output neuron."""
        response = client.post(
            f'/api/networks/{network_id}/evaluate', json={'input': [0.5, -0.5]}
        )
        assert response.status_code == 200
        output = response.get_json()['output']
        net = api_server.active_networks[network_id]['network']
        assert output == pytest.approx(net.evaluate([0.5, -0.5]).tolist())

    def test_evaluate_wrong_length(self, client, network_id):
        """Test that a wrong input length maps ShapeError to 400."""
        response = client.post(
            f'/api/networks/{network_id}/evaluate', json={'input': [1.0]}
        )
        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'ShapeError'

    def test_evaluate_unknown_network(self, client):
        """Test that an unknown id returns 404."""
        response = client.post('/api/networks/nope/evaluate', json={'input': [1]})
        assert response.status_code == 404

    def test_list_networks(self, client, network_id):
        """Test that in-memory and saved networks are listed once each."""
        client.post(f'/api/networks/{network_id}/save', json={})
        other = client.post('/api/networks', json={'layer_counts': [1, 1]})
        other_id = other.get_json()['network_id']

        networks = client.get('/api/networks').get_json()['networks']
        ids = [n['network_id'] for n in networks]
        assert sorted(ids) == sorted([network_id, other_id])

    def test_delete_network(self, client, network_id):
        """Test deletion from memory and a 404 on the second attempt."""
        response = client.delete(f'/api/networks/{network_id}')
        assert response.status_code == 200
        assert response.get_json()['deleted_from_memory'] is True
        assert client.delete(f'/api/networks/{network_id}').status_code == 404


@pytest.mark.unit
class TestTopologyEndpoint:
    """Test live topology edits over HTTP."""

    def test_expand(self, client, network_id):
        """Test that expanding reports the new architecture."""
        response = client.post(f'/api/networks/{network_id}/topology', json={
            'operation': 'expand', 'layer': 1, 'amount': 2
        })
        data = response.get_json()
        assert response.status_code == 200
        assert data['changed'] is True
        assert data['architecture'] == [2, 5, 1]

    def test_stretch_noop(self, client, network_id):
        """Test that an indivisible stretch reports changed=False."""
        response = client.post(f'/api/networks/{network_id}/topology', json={
            'operation': 'stretch', 'layer': 1, 'amount': 2, 'group_width': 2
        })
        assert response.status_code == 200
        assert response.get_json()['changed'] is False

    def test_shrink_whole_layer(self, client, network_id):
        """Test that removing every neuron maps ShapeError to 400."""
        response = client.post(f'/api/networks/{network_id}/topology', json={
            'operation': 'shrink', 'layer': 1, 'amount': 3
        })
        assert response.status_code == 400

    @pytest.mark.parametrize('body', [
        {'operation': 'rotate', 'layer': 1, 'amount': 1},
        {'operation': 'expand', 'layer': '1', 'amount': 1},
        {'operation': 'expand', 'layer': 1},
    ])
    def test_invalid_request(self, client, network_id, body):
        """Test that malformed topology requests return 400."""
        response = client.post(f'/api/networks/{network_id}/topology', json=body)
        assert response.status_code == 400


@pytest.mark.unit
class TestPersistenceEndpoints:
    """Test saving and loading over HTTP."""

    def test_save_and_load(self, client, network_id):
        """Test that a saved network loads back with equal parameters."""
        original = api_server.active_networks[network_id]['network']
        response = client.post(f'/api/networks/{network_id}/save', json={'mode': 'legacy'})
        assert response.status_code == 200
        assert response.get_json()['mode'] == 'legacy'

        response = client.post(f'/api/networks/{network_id}/load', json={})
        assert response.status_code == 200
        loaded = api_server.active_networks[network_id]['network']
        assert loaded is not original
        for a, b in zip(original.weights, loaded.weights):
            assert np.array_equal(a, b)

    def test_save_unknown_mode(self, client, network_id):
        """Test that an unknown storage mode returns 400."""
        response = client.post(f'/api/networks/{network_id}/save', json={'mode': 'zip'})
        assert response.status_code == 400

    def test_load_missing(self, client):
        """Test that loading an unsaved network returns 404."""
        assert client.post('/api/networks/ghost/load', json={}).status_code == 404

    def test_load_corrupt(self, client):
        """Test that a corrupt file maps CorruptFileError to 422."""
        model_dir = api_server.MODEL_DIR
        os.makedirs(model_dir, exist_ok=True)
        with open(os.path.join(model_dir, 'broken.brain'), 'w') as f:
            f.write('BRAIN 1 plain\n1 1\nnot numbers\n')
        response = client.post('/api/networks/broken/load', json={})
        assert response.status_code == 422
        assert response.get_json()['error_type'] == 'CorruptFileError'


@pytest.mark.integration
class TestTrainingEndpoints:
    """Test training jobs and their controls."""

    def test_train_to_completion(self, client, network_id, events):
        """Test a full training job with progress events."""
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS,
            'targets': XOR_TARGETS,
            'blocks': 5,
            'config': {'example_block_size': 4, 'momentum': 0.5}
        })
        assert response.status_code == 202
        job_id = response.get_json()['job_id']

        status = client.get(f'/api/training/{job_id}').get_json()
        assert status['status'] == 'completed'
        assert status['blocks_run'] == 5
        assert status['examples_done'] == 20
        assert status['progress'] == 100

        names = [name for name, _ in events]
        assert names.count('training_update') == 5
        assert names[-1] == 'training_complete'
        assert api_server.active_networks[network_id]['trained'] is True

    def test_trainer_detached_after_job(self, client, network_id):
        """Test that finished jobs no longer resize with the network."""
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS, 'blocks': 1
        })
        job_id = response.get_json()['job_id']
        session = api_server.training_jobs[job_id]['session']

        client.post(f'/api/networks/{network_id}/topology', json={
            'operation': 'expand', 'layer': 1, 'amount': 1
        })
        assert session.trainer.accumulator.layer_counts == [2, 3, 1]

    def test_train_mismatched_data(self, client, network_id):
        """Test that bad training data is rejected before the job starts."""
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS[:3]
        })
        assert response.status_code == 400
        assert api_server.training_jobs == {}

    def test_train_wrong_shape(self, client, network_id):
        """Test that a wrong-length example is rejected with 400."""
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': [[0, 0, 0]], 'targets': [[1]]
        })
        assert response.status_code == 400

    def test_train_bad_config(self, client, network_id):
        """Test that an invalid config is rejected with 400."""
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS,
            'config': {'accuracy': -1}
        })
        assert response.status_code == 400

    def test_train_unknown_network(self, client):
        """Test that training an unknown network returns 404."""
        response = client.post('/api/networks/nope/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS
        })
        assert response.status_code == 404

    def test_stop_before_task_runs(self, client, network_id, monkeypatch):
        """Test that a job stopped before scheduling ends as stopped."""
        monkeypatch.setattr(
            api_server.socketio, 'start_background_task',
            lambda target, *args, **kwargs: None
        )
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS, 'blocks': 3
        })
        job_id = response.get_json()['job_id']

        # Pausing a job that never started is illegal
        assert client.post(f'/api/training/{job_id}/pause').status_code == 400

        response = client.post(f'/api/training/{job_id}/stop')
        assert response.status_code == 200
        assert response.get_json()['state'] == 'stopped'

        api_server.train_network_task(network_id, job_id)
        job = api_server.training_jobs[job_id]
        assert job['status'] == 'stopped'
        assert job['session'].blocks_run == 0

    def test_pause_and_resume_job(self, client, network_id, monkeypatch):
        """Test pausing and resuming a job between blocks."""
        monkeypatch.setattr(
            api_server.socketio, 'start_background_task',
            lambda target, *args, **kwargs: None
        )
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS, 'blocks': 3
        })
        job_id = response.get_json()['job_id']
        session = api_server.training_jobs[job_id]['session']
        session.start()
        session.advance(max_blocks=3)

        response = client.post(f'/api/training/{job_id}/pause')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'paused'
        assert session.state is SessionState.PAUSED

        # A second training request for the same network is refused
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS
        })
        assert response.status_code == 409

        response = client.post(f'/api/training/{job_id}/resume')
        assert response.get_json()['status'] == 'training'

        api_server.train_network_task(network_id, job_id)
        assert api_server.training_jobs[job_id]['status'] == 'completed'
        assert session.blocks_run == 3

    def test_unknown_job_and_action(self, client, network_id):
        """Test 404s for unknown jobs and actions."""
        assert client.get('/api/training/nope').status_code == 404
        assert client.post('/api/training/nope/pause').status_code == 404

        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS, 'blocks': 1
        })
        job_id = response.get_json()['job_id']
        assert client.post(f'/api/training/{job_id}/rewind').status_code == 404


@pytest.mark.integration
class TestTrainingJobCleanup:
    """Test that finished training jobs are released."""

    def _train(self, client, network_id, blocks=1):
        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_INPUTS, 'targets': XOR_TARGETS, 'blocks': blocks
        })
        assert response.status_code == 202
        return response.get_json()['job_id']

    def test_delete_network_drops_its_jobs(self, client):
        """Test that repeated create, train and delete leaves no jobs behind."""
        for seed in range(5):
            response = client.post('/api/networks', json={
                'layer_counts': [2, 3, 1], 'seed': seed
            })
            network_id = response.get_json()['network_id']
            self._train(client, network_id)
            assert client.delete(f'/api/networks/{network_id}').status_code == 200

        assert api_server.active_networks == {}
        assert len(api_server.training_jobs) == 0

    def test_delete_stops_running_job(self, client, network_id, monkeypatch):
        """Test that deleting a network stops a job that has not finished."""
        monkeypatch.setattr(
            api_server.socketio, 'start_background_task',
            lambda target, *args, **kwargs: None
        )
        job_id = self._train(client, network_id, blocks=3)
        session = api_server.training_jobs[job_id]['session']

        client.delete(f'/api/networks/{network_id}')

        assert job_id not in api_server.training_jobs
        assert session.state is SessionState.STOPPED

    def test_cleanup_removes_only_finished_jobs(self, client, network_id, monkeypatch):
        """Test that completed, stopped and failed jobs are removed."""
        finished = self._train(client, network_id)

        monkeypatch.setattr(
            api_server.socketio, 'start_background_task',
            lambda target, *args, **kwargs: None
        )
        pending = self._train(client, network_id)
        api_server.training_jobs['failed-job'] = {
            'network_id': network_id, 'status': 'failed'
        }
        api_server.training_jobs['stopped-job'] = {
            'network_id': network_id, 'status': 'stopped'
        }

        assert api_server.cleanup_finished_training_jobs() == 3
        assert list(api_server.training_jobs) == [pending]
        assert client.get(f'/api/training/{finished}').status_code == 404
        assert client.get(f'/api/training/{pending}').status_code == 200

    def test_start_cleanup_task_is_idempotent(self, monkeypatch):
        """Test that the cleanup task is spawned at most once."""
        spawned = []
        monkeypatch.setattr(api_server, '_cleanup_task_started', False)
        monkeypatch.setattr(api_server.gevent, 'spawn', spawned.append)

        api_server.start_cleanup_task()
        api_server.start_cleanup_task()

        assert spawned == [api_server.cleanup_training_jobs_task]
