version = 'TxWatch 1.0.0'
version_short = version.split()[-1]
