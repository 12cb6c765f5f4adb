"""Set up IKEv2 on a Libreswan IPsec VPN server and upgrade Libreswan."""
