"""kube-lensy: live logs and health diagnostics over kubectl and helm."""

__version__ = "0.1.0"
