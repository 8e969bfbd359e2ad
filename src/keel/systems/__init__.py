"""This package contains the systems resources can be converged on."""
