# MIT License
# Copyright (c) 2025 Hashborn

"""StakeChain: validator lifecycle dev node, staking client and confirmation poller."""

__version__ = "0.1.0"
