# fastqbam/scripts/__init__.py
# This file makes 'scripts' a subpackage of 'fastqbam'
