"""
Positioning simulation runner.

Runs a simulation with the defaults in config.py (overridable from the
command line), prints RMS position error per epoch, and optionally writes
the final snapshot as JSON.
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Dict, List, Optional

import config
from proximum_core import Simulation, SimulationConfig
from proximum_core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Command-line parser; every flag overrides one SIMULATION_CONFIG entry."""
    parser = argparse.ArgumentParser(
        description="Trustless ToF positioning simulation (EKF vs least squares)"
    )
    parser.add_argument("--nodes", dest="n_nodes", type=int, help="number of nodes")
    parser.add_argument("--epochs", dest="n_epochs", type=int, help="number of epochs")
    parser.add_argument("--measurements", dest="n_measurements", type=int,
                        help="measurements per node update")
    parser.add_argument("--resolution", dest="h3_resolution", type=int, help="H3 resolution (0-15)")
    parser.add_argument("--distance-max", dest="message_distance_max", type=float,
                        help="maximum ping distance (m)")
    parser.add_argument("--ls-iterations", dest="ls_iterations", type=int,
                        help="least-squares iterations per update")
    parser.add_argument("--seed", dest="seed", type=int, help="random seed")
    parser.add_argument("--output", type=Path, help="write final snapshot JSON here")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> SimulationConfig:
    """Merge CLI overrides into the defaults."""
    record: Dict = dict(config.SIMULATION_CONFIG)
    for key in record:
        value = getattr(args, key, None)
        if value is not None:
            record[key] = value
    return SimulationConfig.from_dict(record)


def print_stats(simulation: Simulation):
    """Print one line per recorded epoch."""
    stats = simulation.stats
    print("=" * 60)
    print(f"{'epoch':>6s} {'kf_rms_km':>14s} {'ls_rms_km':>14s} {'asserted_km':>14s}")
    print("=" * 60)
    for epoch, (kf, ls, asserted) in enumerate(zip(
        stats.kf_estimation_rms_error,
        stats.ls_estimation_rms_error,
        stats.assertion_rms_error,
    )):
        if epoch % config.OUTPUT_CONFIG["print_interval"] == 0 or epoch == len(stats) - 1:
            print(f"{epoch:6d} {kf / 1000:14.3f} {ls / 1000:14.3f} {asserted / 1000:14.3f}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    
    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, config.LOGGING_CONFIG["level"]),
        format=config.LOGGING_CONFIG["format"],
    )
    
    try:
        sim_config = config_from_args(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    
    simulation = Simulation(sim_config)
    simulation.run()
    
    print_stats(simulation)
    simulation.metrics.print_summary()
    
    if args.output is not None:
        args.output.write_text(
            json.dumps(simulation.snapshot().to_dict(), indent=config.OUTPUT_CONFIG["json_indent"])
        )
        logger.info(f"Snapshot written to {args.output}")
    
    return 0


if __name__ == "__main__":
    sys.exit(main())
