"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Directory-based storage for named networks.

Each network is one `.brain` text file named after its network id. The
file header carries the storage mode and layer counts, so listing and
metadata queries never have to parse the parameters.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from brainlib import persistence
from brainlib.errors import ConfigurationError, CorruptFileError, MissingFileError
from brainlib.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

NETWORK_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-][A-Za-z0-9_.-]*$')


def validate_network_id(network_id: str) -> str:
    """
    Check that a network id can be used as a file name.

    Raises:
        ConfigurationError: If the id is empty or contains path characters
    """
    if not isinstance(network_id, str) or not NETWORK_ID_PATTERN.match(network_id):
        raise ConfigurationError(
            f"Invalid network_id {network_id!r}: use letters, digits, "
            f"'_', '-' and '.'"
        )
    return network_id


class ModelDirectory:
    """
    Manages a directory of saved networks.

    The directory stores one file per network:
    - a header line with format version and storage mode
    - the layer counts
    - one line of weights and bias per neuron
    """

    def __init__(self, model_dir: str = 'models'):
        """
        Initialize the model directory.

        Args:
            model_dir: Directory holding the `.brain` files
        """
        self.model_dir = model_dir
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Create the model directory if it doesn't exist."""
        if self.model_dir and not os.path.exists(self.model_dir):
            os.makedirs(self.model_dir)

    def path_for(self, network_id: str) -> str:
        return persistence.file_path(
            self.model_dir, validate_network_id(network_id)
        )

    def save_network_to_dir(
        self,
        network: Network,
        network_id: str,
        mode: str = 'plain',
        key: Optional[int] = None
    ) -> str:
        """
        Save a network under `network_id`, replacing any previous file.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            mode: 'plain' or 'legacy'
            key: Legacy key override

        Returns:
            Path of the written file

        Raises:
            ConfigurationError: If the id or mode is invalid
        """
        path = self.path_for(network_id)
        persistence.write_store(network.store, path, mode, key)
        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.layer_counts}, mode={mode}"
        )
        return path

    def load_network_from_dir(self, network_id: str, activation=None) -> Network:
        """
        Load a network by id.

        Args:
            network_id: Unique identifier of the network
            activation: Activation of the loaded network, logistic if None

        Returns:
            The loaded Network

        Raises:
            MissingFileError: If no such network was saved
            CorruptFileError: If the file cannot be decoded
        """
        network = Network.from_file(self.path_for(network_id), activation)
        logger.info(f"Loaded network '{network_id}'")
        return network

    def _metadata(self, network_id: str, path: str) -> Dict[str, Any]:
        version, mode, architecture = persistence.read_header(path)
        stat = os.stat(path)
        return {
            'network_id': network_id,
            'architecture': architecture,
            'weights_shape': [
                [architecture[i + 1], architecture[i]]
                for i in range(len(architecture) - 1)
            ],
            'biases_shape': [
                [architecture[i + 1], 1]
                for i in range(len(architecture) - 1)
            ],
            'format_version': version,
            'mode': mode,
            'size_bytes': stat.st_size,
            'updated_at': datetime.fromtimestamp(
                stat.st_mtime, tz=timezone.utc
            ).isoformat(),
        }

    def list_networks_from_dir(self) -> List[Dict[str, Any]]:
        """
        List all saved networks with metadata, newest first.

        Files whose header cannot be read are listed with an 'error'
        entry instead of metadata.
        """
        networks = []
        for entry in os.listdir(self.model_dir):
            if not entry.endswith(persistence.FILE_SUFFIX):
                continue
            network_id = entry[:-len(persistence.FILE_SUFFIX)]
            path = os.path.join(self.model_dir, entry)
            try:
                networks.append(self._metadata(network_id, path))
            except CorruptFileError as e:
                logger.warning(f"Skipping unreadable network file {path}: {e}")
                networks.append({
                    'network_id': network_id,
                    'error': str(e),
                    'updated_at': None,
                })

        networks.sort(key=lambda n: n['updated_at'] or '', reverse=True)
        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_dir(self, network_id: str) -> bool:
        """
        Delete a saved network.

        Returns:
            bool: True if deleted, False if not found
        """
        path = self.path_for(network_id)
        if not os.path.isfile(path):
            logger.warning(
                f"Could not delete network '{network_id}': not found"
            )
            return False
        os.remove(path)
        logger.info(f"Deleted network '{network_id}'")
        return True

    def get_network_metadata_from_dir(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without parsing the parameters.

        Returns:
            Metadata dictionary or None if not found

        Raises:
            CorruptFileError: If the header cannot be read
        """
        path = self.path_for(network_id)
        try:
            return self._metadata(network_id, path)
        except MissingFileError:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None


# Directory instances by path
_directories: Dict[str, ModelDirectory] = {}


def _get_directory(model_dir: str) -> ModelDirectory:
    """
    Get or create the ModelDirectory for a path.

    Returns:
        ModelDirectory: The shared instance for `model_dir`
    """
    directory = _directories.get(model_dir)
    if directory is None:
        directory = ModelDirectory(model_dir)
        _directories[model_dir] = directory
    else:
        directory._ensure_directory()
    return directory


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = 'models',
    mode: str = 'plain',
    key: Optional[int] = None
) -> str:
    """
    Save a network to the model directory.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory holding the network files
        mode: 'plain' or 'legacy'
        key: Legacy key override

    Returns:
        str: Path of the written file

    Raises:
        ConfigurationError: If the id or mode is invalid

    Example:
        >>> net = Network(784, [30], 10)
        >>> save_network(net, "my_network")
        'models/my_network.brain'
    """
    return _get_directory(model_dir).save_network_to_dir(
        network, network_id, mode, key
    )


def load_network(network_id: str, model_dir: str = 'models', activation=None) -> Network:
    """
    Load a network from the model directory.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory holding the network files
        activation: Activation of the loaded network, logistic if None

    Returns:
        The loaded Network

    Raises:
        MissingFileError: If the network was never saved
        CorruptFileError: If the file cannot be decoded

    Example:
        >>> net = load_network("my_network")
        >>> print(f"Loaded network with {len(net.layer_counts)} layers")
    """
    return _get_directory(model_dir).load_network_from_dir(network_id, activation)


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory holding the network files

    Returns:
        list: A list of metadata dictionaries for each saved network

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    return _get_directory(model_dir).list_networks_from_dir()


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """
    Delete a saved network.

    Args:
        network_id: The unique identifier of the network to delete
        model_dir: Directory holding the network files

    Returns:
        bool: True if deletion was successful, False if not found
    """
    return _get_directory(model_dir).delete_network_from_dir(network_id)


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading its parameters.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory holding the network files

    Returns:
        dict: Network metadata or None if not found

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Mode: {metadata['mode']}")
    """
    return _get_directory(model_dir).get_network_metadata_from_dir(network_id)
