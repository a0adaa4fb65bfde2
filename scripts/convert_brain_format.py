#!/usr/bin/env python3
"""
Convert a saved network file between storage modes.

Rewrites a `.brain` file with the plain or the legacy (obfuscated) codec.
Legacy files written by older tools can be turned into plain files that
are readable in any text editor, and the other way round.

Usage:
    python scripts/convert_brain_format.py SRC DST --mode plain
    python scripts/convert_brain_format.py SRC DST --mode legacy [--key 17]

The script will:
1. Load the source file (any storage mode)
2. Write it to DST with the requested mode
3. Verify the rewrite by reloading it and comparing every parameter
"""

import argparse
import os
import sys
from typing import List, Optional

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..'))

from brainlib import persistence  # noqa: E402
from brainlib.errors import BrainError  # noqa: E402
from brainlib.parameters import ParameterStore  # noqa: E402


def convert(src: str, dst: str, mode: str, key: Optional[int] = None) -> ParameterStore:
    """
    Rewrite `src` to `dst` using the given storage mode.

    Parameters:
    -----------
    src : str
        Existing network file
    dst : str
        Output path, overwritten if present
    mode : str
        'plain' or 'legacy'
    key : int, optional
        Legacy key; derived from the layer counts and clock if omitted

    Returns:
    --------
    ParameterStore
        The parameters that were written
    """
    _, source_mode, counts = persistence.read_header(src)
    print(f"📂 Loading {src} (mode={source_mode}, layers={counts})")
    store = persistence.read_store(src)

    print(f"💾 Writing {dst} (mode={mode})")
    persistence.write_store(store, dst, mode, key)
    return store


def verify_conversion(dst: str, original: ParameterStore) -> bool:
    """
    Verify that `dst` holds exactly the original parameters.

    Returns:
    --------
    bool
        True if every layer count and parameter matches
    """
    print("🔍 Verifying conversion...")
    written = persistence.read_store(dst)

    if written.layer_counts != original.layer_counts:
        print(f"❌ Layer counts differ: {written.layer_counts} != {original.layer_counts}")
        return False

    pairs = list(zip(written.weight_arrays(), original.weight_arrays())) + \
        list(zip(written.bias_arrays(), original.bias_arrays()))
    for a, b in pairs:
        if not np.array_equal(a, b):
            print("❌ Parameters differ after conversion")
            return False

    print("✅ Verification passed! Parameters are identical.")
    return True


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a .brain network file between storage modes."
    )
    parser.add_argument('src', help="existing network file")
    parser.add_argument('dst', help="output network file")
    parser.add_argument(
        '--mode', choices=persistence.CODECS, default='plain',
        help="storage mode of the output file (default: plain)"
    )
    parser.add_argument(
        '--key', type=int, default=None,
        help="legacy key, derived automatically if omitted"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main conversion function. Returns the process exit code."""
    args = parse_args(argv)

    if not os.path.exists(args.src):
        print(f"❌ Error: Source file not found: {args.src}")
        return 1

    try:
        store = convert(args.src, args.dst, args.mode, args.key)
    except BrainError as e:
        print(f"❌ Error during conversion: {e}")
        return 1

    if not verify_conversion(args.dst, store):
        return 1

    print(f"✅ Converted {args.src} -> {args.dst}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
