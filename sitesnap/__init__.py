"""SiteSnap - timestamped snapshots of project and site directories"""

__version__ = "0.3.0"
