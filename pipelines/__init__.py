"""
Match Outcome Tuning Pipelines

CLI scripts for:
- prepare: Fetch the match CSV, engineer team differences, train/test split
- explore: Exploratory figures for the training table
- tune: Hyperparameter grid search (or Optuna) with cross-validation
- finalize: Refit the best configuration and evaluate on the test split
"""
