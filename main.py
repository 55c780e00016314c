"""
Main script for reconstructing an environmental covariate from compositional
species counts.

This script runs the full comparison report: it fits the BUMMER, spline (GAM) and
multivariate GP functional-response models, predicts held-out covariates, fits
the WA, MAT and MLRC transfer functions and tabulates their predictive accuracy.
"""

import argparse
import os
import sys

from pollen_recon.config import FUNCTIONS, LIKELIHOODS, CORRELATION_FUNCTIONS
from pollen_recon.synthetic_data import simulate_compositional_data, RESPONSE_TYPES
from pollen_recon.utils.data_loader import load_count_data
from pollen_recon.model_comparison import run_model_comparison


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Compare Bayesian functional-response models and transfer functions for covariate reconstruction."
    )

    # Data options
    parser.add_argument(
        "--data_type", type=str, default="synthetic",
        choices=["synthetic", "real"],
        help="Type of data to use (synthetic or real)"
    )
    parser.add_argument(
        "--data_file", type=str, default=None,
        help="Path to a count table (CSV, TXT or Excel) if data_type is 'real'"
    )
    parser.add_argument(
        "--covariate_column", type=str, default="X",
        help="Name of the covariate column in the data file"
    )
    parser.add_argument(
        "--n_samples", type=int, default=250,
        help="Number of simulated samples"
    )
    parser.add_argument(
        "--n_species", type=int, default=8,
        help="Number of simulated species"
    )
    parser.add_argument(
        "--response", type=str, default="gaussian-process",
        choices=list(RESPONSE_TYPES),
        help="Functional response used to simulate data"
    )
    parser.add_argument(
        "--test_size", type=float, default=0.2,
        help="Fraction of samples held out for prediction"
    )

    # Model configuration
    parser.add_argument(
        "--functions", type=str, nargs="+", default=list(FUNCTIONS),
        choices=list(FUNCTIONS),
        help="Functional-response models to fit"
    )
    parser.add_argument(
        "--likelihood", type=str, default="dirichlet-multinomial",
        choices=list(LIKELIHOODS),
        help="Likelihood for the counts"
    )
    parser.add_argument(
        "--correlation_function", type=str, default="exponential",
        choices=list(CORRELATION_FUNCTIONS),
        help="Correlation function of the GP model"
    )
    parser.add_argument(
        "--df", type=int, default=6,
        help="Number of B-spline basis functions"
    )
    parser.add_argument(
        "--n_knots", type=int, default=30,
        help="Number of predictive-process knots"
    )

    # MCMC options
    parser.add_argument("--n_adapt", type=int, default=500, help="Adaptation iterations per chain")
    parser.add_argument("--n_mcmc", type=int, default=1000, help="Sampling iterations per chain")
    parser.add_argument("--n_thin", type=int, default=1, help="Thinning interval")
    parser.add_argument("--n_chains", type=int, default=4, help="Number of chains")
    parser.add_argument(
        "--parallel_chains", action="store_true",
        help="Run chains in parallel processes"
    )
    parser.add_argument("--n_adapt_pred", type=int, default=500, help="Adaptation iterations for prediction")
    parser.add_argument("--n_mcmc_pred", type=int, default=500, help="Sampling iterations for prediction")
    parser.add_argument(
        "--n_boot", type=int, default=100,
        help="Bootstrap resamples for the transfer-function errors"
    )
    parser.add_argument(
        "--no_transfer_functions", action="store_true",
        help="Skip the WA, MAT and MLRC baselines"
    )
    parser.add_argument(
        "--random_state", type=int, default=42,
        help="Random seed for reproducibility"
    )

    # Output options
    parser.add_argument(
        "--output_dir", type=str, default="results",
        help="Directory for cached fits, tables and figures"
    )
    parser.add_argument(
        "--progress_dir", type=str, default="progress",
        help="Directory for per-chain progress files"
    )
    parser.add_argument(
        "--overwrite", action="store_true",
        help="Refit models even when cached results exist"
    )
    parser.add_argument(
        "--no_plots", action="store_true",
        help="Do not create figures"
    )

    return parser.parse_args()


def main():
    """Main entry point for running the comparison."""
    args = parse_args()

    os.makedirs(args.output_dir, exist_ok=True)

    # Load or generate data
    if args.data_type == "synthetic":
        print("Generating synthetic compositional data...")
        data = simulate_compositional_data(
            n=args.n_samples,
            d=args.n_species,
            response=args.response,
            random_state=args.random_state
        )
    else:
        if args.data_file is None:
            print("Error: --data_file is required when data_type is 'real'")
            sys.exit(1)
        print(f"Loading real data from {args.data_file}...")
        data = load_count_data(args.data_file, args.covariate_column, verbose=True)

    params = {
        'n_adapt': args.n_adapt,
        'n_mcmc': args.n_mcmc,
        'n_thin': args.n_thin,
        'n_chains': args.n_chains,
        'parallel_chains': args.parallel_chains,
        'likelihood': args.likelihood,
        'correlation_function': args.correlation_function,
        'df': args.df,
        'n_knots': args.n_knots,
        'n_adapt_pred': args.n_adapt_pred,
        'n_mcmc_pred': args.n_mcmc_pred,
        'output_directory': args.output_dir,
        'progress_directory': args.progress_dir,
        'random_state': args.random_state
    }

    results = run_model_comparison(
        params=params,
        data=data,
        functions=args.functions,
        transfer_functions=not args.no_transfer_functions,
        test_size=args.test_size,
        n_boot=args.n_boot,
        make_plots=not args.no_plots,
        overwrite=args.overwrite,
        verbose=True
    )

    print(f"\nBest method by CRPS: {results['metrics'].index[0]}")
    print(f"All results saved to {args.output_dir}")


if __name__ == "__main__":
    main()
