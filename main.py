import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

import requests

from config.config import SystemConfig, load_config
from integrated_voting_system import DealerFaults, run_election
from mpc.secret_sharing import MPCError
from utils.utils import create_performance_report, format_duration, save_results, setup_logging
from voting.encoder import Choice
from voting.errors import VotingError
from voting.ledger import HttpLedgerClient, load_descriptor
from voting.polling import RetryPolicy, poll_for_totals
from zk.zk_proofs import ZKError

logger = logging.getLogger(__name__)


def parse_choices(raw: Optional[str], num_voters: int) -> Dict[int, Choice]:
    """'yay,nay,abstain' -> {1: YAY, 2: NAY, 3: ABSTAIN}; default all Yay"""
    if not raw:
        return {i: Choice.YAY for i in range(1, num_voters + 1)}
    names = [c for c in raw.split(',') if c.strip()]
    if len(names) != num_voters:
        raise ValueError(f"Got {len(names)} choices for {num_voters} voters")
    return {i: Choice.parse(name) for i, name in enumerate(names, start=1)}


def parse_faults(corrupt: List[str], unresponsive: List[int]) -> DealerFaults:
    """--corrupt DEALER:RECIPIENT[,RECIPIENT...]"""
    corrupt_shares: Dict[int, Set[int]] = {}
    for entry in corrupt:
        dealer, _, recipients = entry.partition(':')
        corrupt_shares[int(dealer)] = {int(r) for r in recipients.split(',') if r}
    return DealerFaults(corrupt_shares, set(unresponsive))


def print_totals(totals) -> None:
    abstain, nay, yay = totals
    print("vote totals:")
    print(f"  Abstain: {abstain}")
    print(f"  Nay    : {nay}")
    print(f"  Yay    : {yay}")


async def run_demo(config: SystemConfig, choices: Dict[int, Choice], faults: DealerFaults) -> bool:
    print("=" * 80)
    print("THRESHOLD-TALLIED WEIGHTED VOTING - DEMONSTRATION")
    print(f"   Committee: {config.dkg.num_members} members, threshold {config.dkg.threshold}")
    print(f"   Voter weights: {config.voter_weights}")
    print(f"   Proof backend: {config.zk.backend}")
    print("=" * 80)

    try:
        system = await run_election(config, choices, faults)
    except (MPCError, VotingError, ZKError) as e:
        logger.error(f"Demo failed: {e}")
        print(f"\nDemo failed: {e}")
        return False

    results = system.get_results()
    print(f"\nQualified dealers: {results['dkg']['qualified_dealers']}")
    print(f"Ballots accepted: {results['ballots']['accepted']}, "
          f"rejected: {results['ballots']['rejected']}")
    print()
    print_totals(system.result.totals)

    print("\nIntegrity Checks:")
    for check, passed in results['integrity_checks'].items():
        print(f"  {check}: {'PASSED' if passed else 'FAILED'}")

    summary = system.monitor.get_summary()
    print(f"\nTotal protocol time: {format_duration(summary['total_duration'])}")

    if config.enable_benchmarking:
        report_path = config.results_dir / "demo_report.json"
        save_results(results, report_path)
        perf_path = config.results_dir / "performance_report.txt"
        perf_path.write_text(create_performance_report(system.monitor))
        print(f"\nFull results saved to: {report_path}")
        print(f"Performance report: {perf_path}")

    return True


async def run_tally_watch(config: SystemConfig, endpoint: str, descriptor_path: Path,
                          session: Optional[requests.Session] = None) -> bool:
    print("Waiting for tally ...")
    try:
        client = HttpLedgerClient(endpoint, load_descriptor(descriptor_path), session=session)
        totals = await poll_for_totals(client.get_totals, RetryPolicy.from_config(config.polling))
    except VotingError as e:
        logger.error(f"Tally polling failed: {e}")
        print(f"Tally not available: {e}")
        return False
    print_totals(totals)
    return True


def main():
    parser = argparse.ArgumentParser(
        description='Threshold-tallied anonymous weighted voting')
    parser.add_argument('--mode', choices=['demo', 'tally'], default='demo')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', default=None,
                        help='Logging level (default from config)')
    parser.add_argument('--weights', type=str, default=None,
                        help='Comma separated voter weights, e.g. 1,2,3')
    parser.add_argument('--choices', type=str, default=None,
                        help='Comma separated choices per voter (abstain/nay/yay)')
    parser.add_argument('--corrupt', action='append', default=[],
                        metavar='DEALER:RECIPIENTS',
                        help='Dealer sends garbage shares to the given recipients')
    parser.add_argument('--unresponsive', type=int, action='append', default=[],
                        metavar='DEALER', help='Dealer ignores complaints')
    parser.add_argument('--descriptor', '--zkv', dest='descriptor', default=None,
                        help='Ledger descriptor file (tally mode)')
    parser.add_argument('--rpc-endpoint', '-r', dest='endpoint', default=None,
                        help='Ledger RPC endpoint (tally mode)')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    if args.weights:
        config.voter_weights = [int(w) for w in args.weights.split(',')]

    level = args.log_level or ('DEBUG' if config.enable_debug_mode else 'INFO')
    setup_logging(level, log_dir=config.log_dir)

    if args.mode == 'demo':
        try:
            choices = parse_choices(args.choices, len(config.voter_weights))
            faults = parse_faults(args.corrupt, args.unresponsive)
        except ValueError as e:
            parser.error(str(e))
        success = asyncio.run(run_demo(config, choices, faults))
    else:
        success = asyncio.run(run_tally_watch(
            config,
            args.endpoint or config.ledger_endpoint,
            Path(args.descriptor) if args.descriptor else config.descriptor_path))

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
