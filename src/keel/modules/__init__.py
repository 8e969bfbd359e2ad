"""This package contains the catalog modules, which declare resources from parameters and facts."""
