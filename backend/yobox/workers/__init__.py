"""Queue consumers and the harness that runs them."""
