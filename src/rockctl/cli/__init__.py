"""argparse command surface; exit codes are decided here and nowhere else."""
