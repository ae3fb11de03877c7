from setuptools import setup
import util.version

def read_file(fname):
    with open(fname, 'rt') as inf:
        return list(x.rstrip('\n\r') for x in inf if x.strip())

setup(
    name='windchime-prep',
    version=util.version.get_version(),
    license='MIT',
    author='Icarai research',
    install_requires=read_file('requirements.txt'),
    author_email='research@icarai.io',
    description='Read demultiplexing and feature-table preparation for amplicon sequencing runs',
    py_modules=['demux', 'feature_tables'],
    packages=['util'],
    include_package_data=True,
    platforms='any',
    python_requires='>=3.8',
    extras_require={
        'test': ['pytest'],
    }
)
