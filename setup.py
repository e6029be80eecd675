from setuptools import setup, find_packages

setup(
    name='subgen',
    version='1.0.0',
    packages=find_packages(exclude=('tests', 'tests.*')),
    include_package_data=True,
    python_requires='>=3.11',
    install_requires=[
        'stable-ts>=2.13.3',
        'openai-whisper>=20231106',
        'colored>=2.2.3',
        'halo>=0.0.31',
        'ffmpeg-python>=0.2.0',
        'soundfile>=0.12.1',
        'psutil>=5.9',
        'python-dotenv>=1.0',
    ],
    extras_require={
        'gpu': [
            'torch>=2.1',
            'openvino>=2024.0',
        ],
        'test': [
            'pytest>=7.4',
        ],
    },
    entry_points='''
        [console_scripts]
        subgen=subgen.__main__:main
    ''',
    license='MIT',
    keywords='speech transcription subtitles whisper gpu acceleration',
    description='Accelerated subtitle generation with automatic GPU backend selection',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
)
