"""
BlockHead - a single-host console for nginx-fronted sites.

Clones site repositories, supervises their server processes, renders and
activates nginx server blocks, and diagnoses whether each site is reachable.
"""

__version__ = "0.1.0"
