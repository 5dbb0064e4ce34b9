"""支持 python -m provisioner 调用"""

from provisioner.cli import main

main()
