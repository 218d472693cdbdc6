"""Network interfaces, peer connection tracking and a host-backed bitswap network."""