"""In-process virtual network, mock routing and delay and rate-limit generators."""