"""
test_convert_script.py
~~~~~~~~~~~~~~~~~~~~~~

Tests for scripts/convert_brain_format.py.
"""

import os
import sys

import numpy as np
import pytest

# Add project root and scripts directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

import convert_brain_format
from brainlib import persistence
from brainlib.network import Network


@pytest.fixture
def saved_network(tmp_path):
    """A plain-mode network file and the network it holds."""
    net = Network(2, [3], 2, rng=np.random.default_rng(12))
    path = net.save_to_file(str(tmp_path), 'source')
    return path, net


@pytest.mark.integration
class TestConvertScript:
    """Test converting between storage modes."""

    def test_plain_to_legacy_and_back(self, saved_network, tmp_path):
        """Test that converting twice returns identical parameters."""
        src, net = saved_network
        legacy = str(tmp_path / 'legacy.brain')
        plain = str(tmp_path / 'plain.brain')

        assert convert_brain_format.main([src, legacy, '--mode', 'legacy', '--key', '33']) == 0
        assert persistence.read_header(legacy) == (1, 'legacy', [2, 3, 2])

        assert convert_brain_format.main([legacy, plain, '--mode', 'plain']) == 0
        with open(src) as a, open(plain) as b:
            assert a.read() == b.read()

    def test_missing_source(self, tmp_path):
        """Test that a missing source file exits with status 1."""
        code = convert_brain_format.main(
            [str(tmp_path / 'none.brain'), str(tmp_path / 'out.brain')]
        )
        assert code == 1

    def test_corrupt_source(self, tmp_path):
        """Test that a corrupt source file exits with status 1."""
        src = tmp_path / 'bad.brain'
        src.write_text('BRAIN 1 plain\n1 1\n')
        code = convert_brain_format.main([str(src), str(tmp_path / 'out.brain')])
        assert code == 1
        assert not (tmp_path / 'out.brain').exists()

    def test_invalid_mode_rejected(self, saved_network, tmp_path):
        """Test that argparse rejects unknown modes."""
        src, _ = saved_network
        with pytest.raises(SystemExit):
            convert_brain_format.main([src, str(tmp_path / 'x.brain'), '--mode', 'zip'])
