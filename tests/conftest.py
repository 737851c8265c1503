import numpy as np
import pytest

from trik.ik_chain import Joint
from trik.utils import IDENTITY


def build_chain(n=4, length=50.0, rotation=IDENTITY, constraint=None, axis=(1.0, 0.0, 0.0)):
    """
    n joints laid along axis, each bone of the given length, root at the origin
    """
    axis = np.asarray(axis, dtype=np.float64)
    root = Joint(rotation=rotation, constraint=constraint() if callable(constraint) else constraint, name="j0")
    chain = [root]
    for i in range(1, n):
        c = constraint() if callable(constraint) else constraint
        chain.append(Joint(chain[-1], axis * length, constraint=c, name=f"j{i}"))
    return chain


@pytest.fixture
def make_chain():
    return build_chain


@pytest.fixture
def chain():
    return build_chain()
