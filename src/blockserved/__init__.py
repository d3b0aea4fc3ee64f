"""BlockServed - batch service of legal notices on TRON.

Process servers submit one batch of notices for many recipients. The backend
stages the attached documents, writes one served notice per recipient inside a
single database transaction, and records per-item outcomes for later lookup.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
