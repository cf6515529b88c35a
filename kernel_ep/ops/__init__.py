"""
Message operators.

Every operator on the logistic factor answers two questions,
`x_average_conditional` and `logistic_average_conditional`,
given the incoming (cavity) Beta and Gaussian messages.
They differ in how: closed-form stabilised EP, importance sampling,
kernel mappers trained offline, or kernel mappers learned just in time
that fall back to importance sampling when unsure.
"""
from ._base import LogisticOpInstance, OpControl, op_control
from .compound_gamma import CGFac4Op, CGFacOp, CGParams, KEPCGFacOp, compound_gamma_message
from .logistic import (
    ISGaussianLogisticOp,
    ISUniformLogisticOp,
    KEPLogisticOp,
    KEPOnlineISLogisticOp,
    LogisticOp,
    beta_from_mean_and_integral,
)
