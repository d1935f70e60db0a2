"""
Entry point for running the rental-disputes webhook server from a checkout.
"""
from disputebot.main import main

if __name__ == "__main__":
    main()
