#!/usr/bin/env python3
"""
================================================================================
Collagen-Tm Validation & Calibration Script
================================================================================

Scores a sequence library against measured Tm values and, optionally,
calibrates the model parameters against it.

Usage:
  collagen-tm --params parameters.txt --library seq_input.txt
  collagen-tm -p parameters.txt -l seq_input.txt --calibrate \\
              --reference parameters_exp.txt --opt-list opt_list.txt -o out/
  collagen-tm -p parameters.txt -l seq_input.txt --score user_lib.txt

Outputs (with --output-dir):
  A3.txt / A2B.txt / ABC.txt   per-composition result tables
  summary.json                 per-sample registers, Tm, deviation
  newParameters.txt            adjusted parameters (after --calibrate)
  user_summary.json            per-register Tm of the --score library

License: MIT
================================================================================
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .ctm_calibrate import (
    CalibrationConfig, auto_tuning_mask, calibrate, count_interactions,
    library_statistics, low_confidence_interactions, score_library,
    DEFAULT_COUNT_THRESHOLD, DEFAULT_DELTA, DEFAULT_MAX_DEV, DEFAULT_MAX_ROUNDS,
    LOW_CONFIDENCE_CUT, SCORING_WORKERS,
)
from .ctm_io import (
    LibraryFormatError, read_library, read_parameters, read_tuning_mask,
    write_composition_reports, write_parameters, write_summary_json,
)

logger = logging.getLogger(__name__)


def print_scores(library, scores, title: str):
    print("=" * 90)
    print(f"  {title}")
    print("=" * 90)
    print(f"  {'#':>4} {'Name':<18} {'nP':>2} {'L':>3} {'Best':>7} {'Tm':>7} "
          f"{'CC':>7} {'CCTm':>7} {'ExpTm':>7} {'Dev':>7} {'Spec':>6}")
    print("-" * 90)
    for n, (sample, s) in enumerate(zip(library, scores)):
        spec = '-' if s.specificity is None else f"{s.specificity:6.2f}"
        flag = ' !' if s.composition_mismatch else ''
        print(f"  {n:>4} {sample.name[:18]:<18} {sample.num_pep:>2} {sample.num_aa:>3} "
              f"{str(s.best.register):>7} {s.best_tm:>7.2f} "
              f"{str(s.cc.register):>7} {s.cc_tm:>7.2f} {s.exp_tm:>7.1f} "
              f"{s.deviation:>+7.2f} {spec:>6}{flag}")
    print("-" * 90)


def print_statistics(stats: dict, label: str):
    n = stats['n_samples']
    print(f"  {label}: n = {n} | sumDev = {stats['sum_deviation']:.3f} "
          f"(mean {stats['mean_deviation']:.3f}) | SSD = {stats['sum_squared_deviation']:.3f} "
          f"(mean {stats['mean_squared_deviation']:.3f})")
    if stats['worst_index'] is not None:
        print(f"  Worst sample: #{stats['worst_index']} "
              f"(deviation {stats['worst_deviation']:+.2f})")
    if stats['outliers']:
        print(f"  |deviation| > 9: {stats['outliers']}")


def print_registers(library, scores):
    for n, (sample, s) in enumerate(zip(library, scores)):
        print(f"  #{n} {sample.label}")
        print("  Melting temperatures of all canonical registers:")
        print(f"    {'Register':<10} {'Tm':>7} {'Prop':>7} {'PairW':>7}")
        for r in s.registers:
            print(f"    {str(r.register):<10} {r.tm:>7.2f} {r.propensity:>7.2f} "
                  f"{r.pairwise:>7.2f}")
        if s.second is not None:
            print(f"  Second best register {s.second.register}: Tm = {s.sec_tm:.2f}, "
                  f"specificity = {s.specificity:.2f}")
        print(f"  Best register {s.best.register}: net charge {s.best.net_charge}, "
              f"total charge {s.best.total_charge}")
        if s.composition_mismatch:
            print("  Most stable register does not include all the peptides")
        print()


def print_low_confidence(library, counts, cut: int):
    for n, sample in enumerate(library):
        total, poor = low_confidence_interactions(sample, counts, cut)
        if total == 0:
            continue
        print(f"  #{n} {sample.label}: {total} low-confidence interactions")
        for (kind, y, x), k in sorted(poor.items()):
            print(f"      {kind:<8} {y},{x}: {k}")


def run(args) -> dict:
    params = read_parameters(args.params)
    library = read_library(args.library)
    if not library:
        raise LibraryFormatError(f"{args.library}: no samples")
    counts = count_interactions(library)

    scores = score_library(library, params, args.workers)
    stats = library_statistics(scores)
    if not args.quiet:
        print_scores(library, scores, f"Training library: {args.library}")
        print_statistics(stats, "Initial")
        print()

    summary = {'initial': stats}
    final_params = params
    if args.calibrate:
        reference = read_parameters(args.reference) if args.reference else params.copy()
        base = read_tuning_mask(args.opt_list) if args.opt_list else None
        config = CalibrationConfig(delta=args.delta, max_rounds=args.max_rounds,
                                   max_dev=args.max_dev,
                                   count_threshold=args.count_threshold,
                                   workers=args.workers)
        mask = auto_tuning_mask(counts, config.count_threshold, base)
        result = calibrate(library, params, reference, mask, config)
        final_params = result.params
        scores = result.scores
        stats = library_statistics(scores)
        summary['final'] = stats
        summary['rounds'] = result.rounds
        summary['adjustments'] = len(result.adjustments)
        if not args.quiet:
            print_scores(library, scores, "After calibration")
            print_statistics(stats, "Final")
            print(f"  Rounds: {result.rounds} | adjustments: {len(result.adjustments)} "
                  f"| SSD {result.initial_ssd:.3f} → {result.final_ssd:.3f}")
            print()

    if args.score:
        user_lib = read_library(args.score)
        user_scores = score_library(user_lib, final_params, args.workers)
        if not args.quiet:
            print_scores(user_lib, user_scores, f"User library: {args.score}")
            print_registers(user_lib, user_scores)
            print("  Low-confidence interactions (shown as Yaa,Xaa):")
            print_low_confidence(user_lib, counts, LOW_CONFIDENCE_CUT)
            print()

    if args.output_dir:
        out = Path(args.output_dir)
        write_composition_reports(out, scores)
        write_summary_json(out / 'summary.json', library, scores, stats,
                           extra={'initial_statistics': summary['initial']})
        if args.calibrate:
            write_parameters(final_params, out / 'newParameters.txt')
        if args.score:
            write_summary_json(out / 'user_summary.json', user_lib, user_scores,
                               library_statistics(user_scores))
        logger.info("Reports written to %s", out)
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collagen triple helix Tm scoring and calibration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  collagen-tm -p parameters.txt -l seq_input.txt
  collagen-tm -p parameters.txt -l seq_input.txt --calibrate -r parameters_exp.txt
  collagen-tm -p parameters.txt -l seq_input.txt --score user_lib.txt -q
        """)
    parser.add_argument('--params', '-p', required=True,
                        help='Parameter table')
    parser.add_argument('--library', '-l', required=True,
                        help='Training sequence library (text or JSON)')
    parser.add_argument('--score', '-s', default=None,
                        help='Additional library to score with the (final) parameters')
    parser.add_argument('--calibrate', '-c', action='store_true',
                        help='Run coordinate-descent calibration')
    parser.add_argument('--reference', '-r', default=None,
                        help='Reference parameter table bounding calibration '
                             '(default: the starting parameters)')
    parser.add_argument('--opt-list', default=None,
                        help='Tuning mask OR-ed with the automatic count mask')
    parser.add_argument('--delta', type=float, default=DEFAULT_DELTA)
    parser.add_argument('--max-rounds', type=int, default=DEFAULT_MAX_ROUNDS)
    parser.add_argument('--max-dev', type=float, default=DEFAULT_MAX_DEV)
    parser.add_argument('--count-threshold', type=int, default=DEFAULT_COUNT_THRESHOLD)
    parser.add_argument('--workers', type=int, default=SCORING_WORKERS)
    parser.add_argument('--output-dir', '-o', default=None,
                        help='Directory for report files')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Suppress detailed output')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log calibration progress')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s")
    try:
        return run(args)
    except (FileNotFoundError, LibraryFormatError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
