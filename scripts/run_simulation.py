"""
Main simulation runner script.

Usage:
    python scripts/run_simulation.py configs/solar_system.yaml

This script:
1. Loads configuration from YAML file
2. Starts the simulation driver on a background thread
3. Consumes snapshots on the main thread and prints a summary line for each
4. Optionally records every snapshot to an HDF5 file
5. Stops after --snapshots snapshots, or on Ctrl+C
"""

import sys
import argparse
import logging
from pathlib import Path

# Add src to path so we can import nbody package
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from nbody.config import SimulationParameters
from nbody.errors import ConfigurationError
from nbody.evolution import SimulationDriver
from nbody.output import SnapshotRecorder


def main():
    parser = argparse.ArgumentParser(
        description='Run the n-body simulation and print live snapshots'
    )
    parser.add_argument(
        'config',
        type=str,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '--snapshots',
        type=int,
        default=None,
        help='Stop after this many snapshots (default: run until Ctrl+C)'
    )
    parser.add_argument(
        '--record',
        type=str,
        default=None,
        help='Record snapshots to this HDF5 file'
    )
    parser.add_argument(
        '--distances',
        action='store_true',
        help='Print pairwise distances (AU) with each snapshot'
    )

    args = parser.parse_args()

    try:
        params = SimulationParameters.from_yaml(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, params.log_level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )

    print("=" * 70)
    print(params)
    print("=" * 70)

    driver = SimulationDriver.from_params(params)
    recorder = SnapshotRecorder(args.record, params) if args.record else None

    driver.start()
    received = 0

    try:
        for snapshot in driver.channel:
            print(snapshot.summary())
            if args.distances:
                distances = snapshot.distances_au()
                labels = snapshot.labels
                for i in range(len(labels)):
                    for j in range(i + 1, len(labels)):
                        print(f"    {labels[i]} - {labels[j]}: {distances[i, j]:.6f} AU")
            if recorder is not None:
                recorder.record(snapshot)

            received += 1
            if args.snapshots is not None and received >= args.snapshots:
                break
    except KeyboardInterrupt:
        print("Interrupted")
    finally:
        driver.stop()
        driver.join()
        if recorder is not None:
            recorder.close()

    if driver.error is not None:
        print(f"[ERROR] simulation failed: {driver.error}")
        sys.exit(1)

    print(f"Done: {received} snapshots, simulated time {driver.state.current_time.isoformat()}")


if __name__ == '__main__':
    main()
