"""HTTP bridge for the RoArm control layer (FastAPI)."""
