#!/usr/bin/env python

'''
Exceptions raised by the natural-orbital engine
'''

class NatOrbError(RuntimeError):
    pass

class MassConservationError(NatOrbError):
    '''The (2j+1)-weighted trace of the density matrix is not the target mass'''
    pass

class DiagonalizationError(NatOrbError):
    pass

class BackfillError(NatOrbError):
    '''Back-fill could not restore the target particle number'''
    pass
