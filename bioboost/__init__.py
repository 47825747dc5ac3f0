"""BioBoost quiz attempt engine and learner-facing API."""
