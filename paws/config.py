# paws/config.py

import os

AWS_REGION = os.getenv("PAWS_REGION", "us-east-1")
MAX_WORKERS = int(os.getenv("PAWS_MAX_WORKERS", "4"))
