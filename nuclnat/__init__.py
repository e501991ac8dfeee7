#!/usr/bin/env python

from nuclnat.modelspace import ModelSpace, Orbit, M
from nuclnat.operator import Operator
from nuclnat.hf import MeanField
from nuclnat.mbpt2 import MBPT2Density
from nuclnat.natorb import NatOrb, NaturalOrbitals, get_natural_orbitals, get_normal_ordered_hnat
from nuclnat.occupations import Backfilled, Infeasible, backfill
from nuclnat.exceptions import *

__version__ = '0.1.0'
